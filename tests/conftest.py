"""Shared fixtures: in-memory database, seeded catalogue and fake gateways."""
import os

# Settings are read at import time
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("REDIS_URL", "")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("SCHEDULER_ENABLED", "false")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("CRON_SECRET", "test-cron-secret")
os.environ.setdefault("STRIPE_SECRET_KEY", "sk_test_123")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test_123")
os.environ.setdefault("CALENDLY_WEBHOOK_SIGNING_KEY", "calendly-test-key")
os.environ.setdefault("PUBLIC_BASE_URL", "https://pay.example.com")
os.environ.setdefault("REQUIRE_SECRETS", "false")

import uuid
from decimal import Decimal
from unittest.mock import AsyncMock

import httpx
import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

import paylink.models  # noqa: F401
from paylink.config import EngineSecrets
from paylink.core.dependencies import get_engine_secrets
from paylink.core.security import create_access_token
from paylink.database import Base, get_db, get_session_factory
from paylink.models.enums import PaymentCurrencyType
from paylink.models.product import Product, ProductExtension, ProductInstallment, ExtensionInstallment
from paylink.models.setting import (
    EUR_TO_RON_RATE_KEY,
    Contract,
    FirstPaymentDateAfterDepositOption,
    PaymentSetting,
    Setting,
)
from paylink.models.user import User
from paylink.services.stripe_service import StripeService, get_stripe_gateway
from paylink.services.tbi_service import TbiService, get_tbi_gateway


@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
async def catalog(db):
    """
    Reference data used by the tests.

    Product: 1000 EUR, 12 months, deposits enabled from 100 EUR, a 3x400 EUR
    installment tier. Extension: 6 months for 500 EUR with a 2x260 EUR tier.
    """
    user = User(id=uuid.uuid4(), email="staff@example.com", name="Staff", role="staff")
    product = Product(
        id=uuid.uuid4(),
        name="Mentorship Program",
        price=Decimal("1000.00"),
        membership_duration_months=12,
        is_deposit_amount_enabled=True,
        min_deposit_amount=Decimal("100.00"),
    )
    installment = ProductInstallment(
        id=uuid.uuid4(),
        product_id=product.id,
        count=3,
        price_per_installment=Decimal("400.00"),
    )
    single_installment = ProductInstallment(
        id=uuid.uuid4(),
        product_id=product.id,
        count=1,
        price_per_installment=Decimal("1000.00"),
    )
    extension = ProductExtension(
        id=uuid.uuid4(),
        product_id=product.id,
        extension_months=6,
        price=Decimal("500.00"),
        min_deposit_amount=Decimal("0"),
    )
    extension_installment = ExtensionInstallment(
        id=uuid.uuid4(),
        extension_id=extension.id,
        count=2,
        price_per_installment=Decimal("260.00"),
    )
    eur_setting = PaymentSetting(
        id=uuid.uuid4(),
        label="EU",
        currency=PaymentCurrencyType.EUR,
        tva_rate=Decimal("19"),
        extra_tax_rate=Decimal("0"),
    )
    ron_setting = PaymentSetting(
        id=uuid.uuid4(),
        label="Romania",
        currency=PaymentCurrencyType.RON,
        tva_rate=Decimal("19"),
        extra_tax_rate=Decimal("0"),
    )
    deposit_option = FirstPaymentDateAfterDepositOption(id=uuid.uuid4(), label="30 days", value=30)
    contract = Contract(id=uuid.uuid4(), name="Standard contract")
    rate = Setting(id=uuid.uuid4(), key=EUR_TO_RON_RATE_KEY, value={"value": "5"})

    db.add_all([
        user, product, installment, single_installment, extension, extension_installment,
        eur_setting, ron_setting, deposit_option, contract, rate,
    ])
    await db.commit()

    return {
        "user": user,
        "product": product,
        "installment": installment,
        "single_installment": single_installment,
        "extension": extension,
        "extension_installment": extension_installment,
        "eur_setting": eur_setting,
        "ron_setting": ron_setting,
        "deposit_option": deposit_option,
        "contract": contract,
    }


@pytest.fixture
def stripe_gateway():
    """Stripe gateway that always succeeds."""
    gateway = AsyncMock(spec=StripeService)
    gateway.create_payment_intent.return_value = {
        "id": "pi_checkout_1",
        "client_secret": "pi_checkout_1_secret_abc",
        "customer_id": "cus_test_1",
    }
    gateway.cancel_payment_intent.return_value = "canceled"
    gateway.retrieve_payment_intent.return_value = {
        "id": "pi_checkout_1",
        "status": "succeeded",
        "customer": "cus_test_1",
        "payment_method": "pm_card_1",
    }
    gateway.charge_off_session.return_value = {"id": "pi_renewal_1", "status": "succeeded"}
    gateway.create_setup_intent.return_value = {"id": "seti_1", "client_secret": "seti_1_secret"}
    gateway.get_setup_intent_payment_method.return_value = "pm_card_2"
    gateway.set_default_payment_method.return_value = None
    return gateway


@pytest.fixture
def tbi_gateway():
    gateway = AsyncMock(spec=TbiService)
    gateway.create_loan_application.return_value = "https://ecommerce.tbibank.ro/application/abc"
    gateway.cancel_application.return_value = None
    return gateway


@pytest.fixture(scope="session")
def tbi_keys():
    """RSA key pair as PEM strings: (private, public)."""
    private_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    private_pem = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("ascii")
    public_pem = private_key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    ).decode("ascii")
    return private_pem, public_pem


@pytest.fixture
def engine_secrets(tbi_keys) -> EngineSecrets:
    return EngineSecrets(
        cron_secret="test-cron-secret",
        stripe_webhook_secret="whsec_test_123",
        tbi_private_key=tbi_keys[0],
    )


@pytest.fixture
async def client(session_factory, stripe_gateway, tbi_gateway, engine_secrets):
    """HTTP client bound to the app, with the test database and fake gateways."""
    from paylink.main import app

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_engine_secrets] = lambda: engine_secrets
    app.dependency_overrides[get_stripe_gateway] = lambda: stripe_gateway
    app.dependency_overrides[get_tbi_gateway] = lambda: tbi_gateway

    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


@pytest.fixture
def staff_headers(catalog) -> dict:
    token = create_access_token({"sub": str(catalog["user"].id), "role": "staff"})
    return {"Authorization": f"Bearer {token}"}
