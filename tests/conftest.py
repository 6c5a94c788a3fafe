import os
import sys
from pathlib import Path

import pytest

# Delays exist to let Stripe's own event ordering settle; tests don't need them.
os.environ.setdefault("CHECKOUT_CANCEL_DELAY_SECONDS", "0")
os.environ.setdefault("SUBSCRIPTION_DELETED_DELAY_SECONDS", "0")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test")
os.environ.setdefault("MONGODB_URI", "mongodb://localhost:27017")
os.environ.setdefault("MONGODB_DB", "creditsync_test")

repo_root = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
services_path = Path(repo_root) / "services"
billing_root = services_path / "billing_api"
sys.path.insert(0, repo_root)
sys.path.insert(0, str(services_path))
sys.path.insert(0, str(billing_root))

from services.event_dedup import processed_events  # noqa: E402


@pytest.fixture(autouse=True)
def reset_processed_events():
    processed_events.clear()
    yield
    processed_events.clear()
