from app.services.subscription_service import (
    get_plan,
    get_plans,
    get_plan_by_price_id,
    resolve_plan_or_default,
)
from app.services.usage_service import (
    check_usage,
    check_usage_or_deny,
)
