"""
Root pytest configuration.

Settings are read at import time, so the environment is switched to test
mode here, before any application module is imported by tests/conftest.py.
"""
import os

os.environ["TESTING"] = "True"
os.environ["DEBUG"] = "False"
os.environ.setdefault("PAYSTACK_SECRET_KEY", "sk_test_secret")
os.environ.setdefault("FRONTEND_URL", "http://shop.test")
