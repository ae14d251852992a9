"""Bank transfers API (staff)."""
import uuid

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from paylink.core.dependencies import get_current_staff
from paylink.core.errors import PaymentEngineError, to_http_exception
from paylink.database import get_db
from paylink.models.enums import OrderStatusType, PaymentProductType
from paylink.services.bank_transfer_service import BankTransferService

router = APIRouter(dependencies=[Depends(get_current_staff)])


class ConfirmBankTransferResponse(BaseModel):
    order_id: uuid.UUID
    status: OrderStatusType


@router.post("/{kind}/orders/{order_id}/confirm", response_model=ConfirmBankTransferResponse)
async def confirm_bank_transfer(
    kind: PaymentProductType,
    order_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
):
    """Mark a bank transfer as received and fulfill its payment link."""
    service = BankTransferService(db)
    try:
        order = await service.confirm(kind, order_id)
    except PaymentEngineError as e:
        raise to_http_exception(e, "Failed to confirm bank transfer")
    return ConfirmBankTransferResponse(order_id=order.id, status=order.status)
