"""Application layer module.

Contains application services (use cases) that orchestrate
domain logic and infrastructure.
"""

from returnpilot.application.admin_auth_service import (
    AdminAuthService,
    get_admin_auth_service,
)
from returnpilot.application.lifecycle_service import (
    RequestLifecycleService,
    get_lifecycle_service,
)
from returnpilot.application.payment_webhook_service import (
    PaymentWebhookService,
    get_payment_webhook_service,
)
from returnpilot.application.reconciliation_service import (
    ReconciliationSweeper,
    get_reconciliation_sweeper,
)

__all__ = [
    "AdminAuthService",
    "get_admin_auth_service",
    "RequestLifecycleService",
    "get_lifecycle_service",
    "PaymentWebhookService",
    "get_payment_webhook_service",
    "ReconciliationSweeper",
    "get_reconciliation_sweeper",
]
