# backend/routes/cart.py
from typing import Optional
from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session
from database import get_db
from utils.tokenJWT import get_current_user
from utils.audit import client_ip, write_log
from utils.errors import NotFound, ValidationFailure
from models.users import User
from models.product import Product
from models.cart import Cart, CartItem
from schemas.cart import CartAddItem, CartUpdateItem, CartOut, CartItemOut

router = APIRouter(prefix="/cart", tags=["Cart"])

def _get_cart(db: Session, user_id: int) -> Optional[Cart]:
    return db.query(Cart).filter(Cart.user_id == user_id).first()

def _get_or_create_cart(db: Session, user_id: int) -> Cart:
    # Retrieve the user's cart or create it on first use
    cart = _get_cart(db, user_id)
    if not cart:
        cart = Cart(user_id=user_id)
        db.add(cart)
        db.flush()
    return cart

def _get_product(db: Session, product_id: int) -> Product:
    product = db.query(Product).filter(Product.id == product_id).first()
    if not product:
        raise NotFound("Product not found")
    return product

def _cart_to_out(cart: Optional[Cart]) -> CartOut:
    if cart is None:
        return CartOut(items=[], total=0.0)

    items_out = []
    total = 0.0

    for it in cart.items:
        # Cart view is priced at the current catalog price
        price = it.product.price if it.product else 0.0
        line_total = price * it.quantity
        total += line_total

        items_out.append(CartItemOut(
            product_id=it.product_id,
            name=it.product.name if it.product else "",
            price=round(price, 2),
            quantity=it.quantity,
            line_total=round(line_total, 2),
        ))

    return CartOut(items=items_out, total=round(total, 2))

@router.get("", response_model=CartOut)
def get_cart(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    return _cart_to_out(_get_cart(db, current_user.id))

@router.post("/add", response_model=CartOut)
def add_to_cart(
    payload: CartAddItem,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    product = _get_product(db, payload.product_id)
    cart = _get_or_create_cart(db, current_user.id)

    item = db.query(CartItem).filter(
        CartItem.cart_id == cart.id, CartItem.product_id == payload.product_id
    ).first()

    # Merge into an existing line; the merged quantity must fit current stock
    new_qty = (item.quantity if item else 0) + payload.quantity
    if new_qty > product.quantity:
        db.rollback()
        raise ValidationFailure("Insufficient stock")

    if item:
        item.quantity = new_qty
    else:
        db.add(CartItem(cart_id=cart.id, product_id=product.id, quantity=payload.quantity))

    db.commit()
    db.refresh(cart)

    out = _cart_to_out(cart)
    write_log(
        db,
        user_id=current_user.id,
        action="CART_ADD",
        resource="cart",
        status="SUCCESS",
        ip=client_ip(request),
        meta={"product_id": product.id, "quantity": payload.quantity, "cart_items": len(out.items), "total": out.total},
    )
    return out

@router.put("/items/{product_id}", response_model=CartOut)
def update_cart_item(
    product_id: int,
    payload: CartUpdateItem,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    product = _get_product(db, product_id)

    # Validate stock for the new quantity
    if payload.quantity > product.quantity:
        raise ValidationFailure("Insufficient stock")

    cart = _get_cart(db, current_user.id)
    if not cart:
        raise NotFound("Cart not found")

    item = db.query(CartItem).filter(CartItem.cart_id == cart.id, CartItem.product_id == product_id).first()
    if not item:
        raise NotFound("Item not found in cart")

    item.quantity = payload.quantity
    db.commit()
    db.refresh(cart)

    out = _cart_to_out(cart)
    write_log(
        db,
        user_id=current_user.id,
        action="CART_UPDATE",
        resource="cart",
        status="SUCCESS",
        ip=client_ip(request),
        meta={"product_id": product_id, "quantity": payload.quantity, "total": out.total},
    )
    return out

@router.delete("/items/{product_id}", response_model=CartOut)
def remove_cart_item(
    product_id: int,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    cart = _get_cart(db, current_user.id)
    if not cart:
        raise NotFound("Cart not found")

    item = db.query(CartItem).filter(CartItem.cart_id == cart.id, CartItem.product_id == product_id).first()
    if not item:
        raise NotFound("Item not found in cart")

    db.delete(item)
    db.commit()
    db.refresh(cart)

    out = _cart_to_out(cart)
    write_log(
        db,
        user_id=current_user.id,
        action="CART_DELETE",
        resource="cart",
        status="SUCCESS",
        ip=client_ip(request),
        meta={"product_id": product_id, "cart_items": len(out.items), "total": out.total},
    )
    return out

@router.delete("", response_model=CartOut)
def clear_cart(
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    cart = _get_cart(db, current_user.id)
    if cart:
        db.query(CartItem).filter(CartItem.cart_id == cart.id).delete(synchronize_session=False)
        db.commit()
        db.refresh(cart)

    write_log(
        db, user_id=current_user.id, action="CART_CLEAR", resource="cart",
        status="SUCCESS", ip=client_ip(request),
    )
    return _cart_to_out(cart)
