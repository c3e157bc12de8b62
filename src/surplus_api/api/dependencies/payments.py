from surplus_api.services.payments import PaymentGateway, build_payment_gateway


def get_payment_gateway() -> PaymentGateway:
    """Gateway used by request handlers; tests override this dependency."""

    return build_payment_gateway()
