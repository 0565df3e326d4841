from services.timeutil import isoformat


def reservation_json(r):
    customer = r.customer
    return {
        "id": r.id,
        "code": r.code,
        "court_id": r.court_id,
        "court_name": r.court.name if r.court else None,
        "customer_id": r.customer_id,
        "customer_name": customer.full_name if customer else None,
        "status": r.status.value,
        "payment_method": r.payment_method.value,
        "deposit_amount": r.deposit_amount,
        "slots": [
            {"start_time": isoformat(s.start_time), "end_time": isoformat(s.end_time)}
            for s in r.slots
        ],
        "starts_at": isoformat(r.starts_at),
        "ends_at": isoformat(r.ends_at),
        "is_active": r.is_active,
        "created_at": isoformat(r.created_at),
        "hold_expires_at": isoformat(r.hold_expires_at),
        "confirmed_at": isoformat(r.confirmed_at),
        "paid_at": isoformat(r.paid_at),
        "cancelled_at": isoformat(r.cancelled_at),
        "cancel_reason": r.cancel_reason,
    }


def invoice_json(inv):
    return {
        "id": inv.id,
        "code": inv.code,
        "booking_id": inv.reservation_id,
        "booking_code": inv.reservation.code if inv.reservation else None,
        "status": inv.status.value,
        "payment_method": inv.payment_method.value,
        "court_fee": inv.court_fee,
        "service_fee": inv.service_fee,
        "subtotal": inv.subtotal,
        "discount_percent": inv.discount_percent,
        "discount_amount": inv.discount_amount,
        "total_amount": inv.total_amount,
        "refunded_amount": inv.refunded_amount,
        "refundable_amount": inv.refundable_amount,
        "items": [
            {
                "kind": i.kind.value,
                "service_id": i.service_id,
                "description": i.description,
                "unit_price": i.unit_price,
                "quantity": i.quantity,
                "duration_minutes": i.duration_minutes,
                "amount": i.amount,
            }
            for i in inv.items
        ],
        "refunds": [
            {
                "amount": rf.amount,
                "reason": rf.reason,
                "reason_type": rf.reason_type.value,
                "actor_id": rf.actor_id,
                "created_at": isoformat(rf.created_at),
            }
            for rf in inv.refunds
        ],
        "created_at": isoformat(inv.created_at),
        "paid_at": isoformat(inv.paid_at),
        "cancelled_at": isoformat(inv.cancelled_at),
        "cancel_reason": inv.cancel_reason,
    }
