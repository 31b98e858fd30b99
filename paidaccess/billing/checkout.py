import logging
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional

import httpx

from .errors import InvalidPlan, ProviderUnavailable

logger = logging.getLogger(__name__)

PLAN_CONFIG_KEYS = {
    "teacher": "POLAR_PRODUCT_TEACHER",
    "school": "POLAR_PRODUCT_SCHOOL",
    "district": "POLAR_PRODUCT_DISTRICT",
}


def plan_products_from_config(cfg: Mapping[str, Any]) -> Mapping[str, str]:
    """Read-only plan -> Polar product id map; unset plans are left out."""
    products = {plan: cfg.get(key) for plan, key in PLAN_CONFIG_KEYS.items()}
    return MappingProxyType({plan: pid for plan, pid in products.items() if pid})


class CheckoutService:
    """
    Creates Polar checkout sessions. The plan catalog is fixed at construction;
    nothing here touches the subscription store.
    """

    def __init__(
        self,
        *,
        api_url: str,
        access_token: Optional[str],
        products: Mapping[str, str],
        timeout: float = 10.0,
        client: Optional[httpx.Client] = None,
    ):
        self.api_url = (api_url or "").rstrip("/")
        self.access_token = access_token
        self.products = MappingProxyType(dict(products))
        self.timeout = timeout
        self._client = client

    @classmethod
    def from_config(cls, cfg: Mapping[str, Any], client: Optional[httpx.Client] = None) -> "CheckoutService":
        return cls(
            api_url=cfg.get("POLAR_API_URL") or "https://api.polar.sh",
            access_token=cfg.get("POLAR_ACCESS_TOKEN"),
            products=plan_products_from_config(cfg),
            timeout=float(cfg.get("POLAR_TIMEOUT_SECONDS") or 10.0),
            client=client,
        )

    def product_for(self, plan_type: str) -> str:
        product_id = self.products.get((plan_type or "").strip().lower())
        if not product_id:
            raise InvalidPlan(plan_type)
        return product_id

    def create_checkout(
        self,
        *,
        customer_email: str,
        plan_type: str,
        success_url: str,
        cancel_url: Optional[str] = None,
        customer_name: Optional[str] = None,
    ) -> Dict[str, str]:
        """
        Create a checkout session for ``plan_type``.
        Returns: {"checkoutUrl": <redirect url>, "checkoutId": <provider id>}
        """
        product_id = self.product_for(plan_type)
        if not self.access_token:
            raise ProviderUnavailable("POLAR_ACCESS_TOKEN is not configured")

        payload: Dict[str, Any] = {
            "products": [product_id],
            "success_url": success_url,
            "customer_email": customer_email,
            "metadata": {"plan_type": plan_type},
        }
        if cancel_url:
            payload["return_url"] = cancel_url
        if customer_name:
            payload["customer_name"] = customer_name

        headers = {"Authorization": f"Bearer {self.access_token}"}
        try:
            if self._client is not None:
                response = self._client.post(
                    f"{self.api_url}/v1/checkouts/", json=payload, headers=headers, timeout=self.timeout
                )
            else:
                with httpx.Client(timeout=self.timeout) as client:
                    response = client.post(f"{self.api_url}/v1/checkouts/", json=payload, headers=headers)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as exc:
            logger.error(
                "billing.checkout.provider_error status=%s body=%s",
                exc.response.status_code, exc.response.text[:500],
            )
            raise ProviderUnavailable(f"checkout creation failed: {exc.response.status_code}") from exc
        except (httpx.HTTPError, ValueError) as exc:
            logger.error("billing.checkout.provider_unreachable %s", exc)
            raise ProviderUnavailable(str(exc)) from exc

        checkout_id = data.get("id")
        url = data.get("url")
        if not url and checkout_id and data.get("client_secret"):
            url = f"https://checkout.polar.sh/{data['client_secret']}"
        if not (checkout_id and url):
            raise ProviderUnavailable("checkout response missing id or url")

        logger.info("billing.checkout.created plan=%s checkout_id=%s", plan_type, checkout_id)
        return {"checkoutUrl": url, "checkoutId": checkout_id}
