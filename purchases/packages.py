"""
Credit Package Catalogue

Resolves a purchase request (a fixed package or a custom credit amount)
into a priced quote. Packages and limits come from settings.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from ledger.conf import credit_config, credit_packages
from ledger.exceptions import InvalidCreditOperation


@dataclass(frozen=True)
class PurchaseQuote:
    """
    A priced purchase request.

    ``package_id`` is None for a custom amount quote.
    """
    credits: int
    price: Decimal
    currency: str
    package_id: Optional[int] = None
    package_name: str = ''

    @property
    def is_package(self):
        return self.package_id is not None


def get_packages():
    """Packages on offer, with the unit price and purchase limits."""
    config = credit_config()
    return {
        'packages': [dict(pkg) for pkg in credit_packages()],
        'price_per_credit': config['PRICE_PER_CREDIT'],
        'currency': config['CURRENCY'],
        'limits': {
            'min_purchase': config['MIN_PURCHASE'],
            'max_purchase': config['MAX_SINGLE_PURCHASE'],
            'max_balance': config['MAX_BALANCE'],
        },
    }


def get_package(package_id):
    for pkg in credit_packages():
        if pkg['id'] == package_id:
            return pkg
    return None


def calculate_price(credits):
    """Price of a custom number of credits at the unit price."""
    return Decimal(credits) * Decimal(str(credit_config()['PRICE_PER_CREDIT']))


def quote(credits_amount=None, package_id=None):
    """
    Build a quote from exactly one of ``credits_amount`` or ``package_id``.

    Raises:
        InvalidCreditOperation: neither/both given, unknown package, or a
            custom amount outside [MIN_PURCHASE, MAX_SINGLE_PURCHASE]
    """
    config = credit_config()
    if (credits_amount is None) == (package_id is None):
        raise InvalidCreditOperation(
            "Provide either credits_amount or package_id", field='credits_amount'
        )

    if package_id is not None:
        pkg = get_package(package_id)
        if pkg is None:
            raise InvalidCreditOperation("Package not found", field='package_id', package_id=package_id)
        return PurchaseQuote(
            credits=pkg['credits'],
            price=Decimal(str(pkg['price'])),
            currency=config['CURRENCY'],
            package_id=pkg['id'],
            package_name=pkg['name'],
        )

    if isinstance(credits_amount, bool) or not isinstance(credits_amount, int):
        raise InvalidCreditOperation("credits_amount must be an integer", field='credits_amount')
    minimum, maximum = config['MIN_PURCHASE'], config['MAX_SINGLE_PURCHASE']
    if not minimum <= credits_amount <= maximum:
        raise InvalidCreditOperation(
            f"Credits must be between {minimum} and {maximum}",
            field='credits_amount',
            min_purchase=minimum,
            max_purchase=maximum,
        )
    return PurchaseQuote(
        credits=credits_amount,
        price=calculate_price(credits_amount),
        currency=config['CURRENCY'],
    )


def recommended_package(monthly_applications):
    """Smallest package covering a month of applications, else the largest."""
    packages = sorted(credit_packages(), key=lambda pkg: pkg['credits'])
    for pkg in packages:
        if monthly_applications <= pkg['credits']:
            return pkg
    return packages[-1]
