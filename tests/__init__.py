import os

_defaults = {
    "DATABASE_URL": "sqlite:///:memory:",
    "REDIS_HOST": "localhost",
    "REDIS_PORT": "6379",
    "SECRET_KEY": "testsecret",
    "PAYMENT_GATEWAY_BASE_URL": "http://fake-payment",
    "PAYMENT_GATEWAY_SECRET_KEY": "sk_test_fake",
    "PAYMENT_CURRENCY": "inr",
}

for k, v in _defaults.items():
    os.environ.setdefault(k, v)
