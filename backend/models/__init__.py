from models.users import User
from models.product import Product
from models.cart import Cart, CartItem
from models.order import Order, OrderItem, PaymentStatus
from models.log import Log
