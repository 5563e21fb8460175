from __future__ import annotations

import base64
import json
from datetime import datetime
from decimal import Decimal
from typing import Mapping
from urllib.parse import urlencode
from zoneinfo import ZoneInfo

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding

from cardshop.core.config import Settings
from cardshop.core.logging import get_logger

logger = get_logger("payment")

# Alipay expects gateway timestamps in Beijing time.
_ALIPAY_TZ = ZoneInfo("Asia/Shanghai")

TRADE_SUCCESS_STATUSES = {"TRADE_SUCCESS", "TRADE_FINISHED"}

_PRODUCT_CODES = {
    "pc": ("alipay.trade.page.pay", "FAST_INSTANT_TRADE_PAY"),
    "wap": ("alipay.trade.wap.pay", "QUICK_WAP_WAY"),
}


def _pem(raw: str, kind: str) -> bytes:
    key = raw.replace("\\n", "\n").strip()
    if "-----BEGIN" not in key:
        key = f"-----BEGIN {kind}-----\n{key}\n-----END {kind}-----"
    return key.encode("utf-8")


def signing_content(params: Mapping[str, object], *, exclude: tuple[str, ...] = ("sign",)) -> str:
    """Alipay RSA2 canonical string: non-empty params sorted by key, ``k=v`` joined by ``&``."""
    pairs = []
    for k in sorted(params):
        if k in exclude:
            continue
        v = params[k]
        if v is None or v == "":
            continue
        pairs.append(f"{k}={v}")
    return "&".join(pairs)


class AlipayGateway:
    """
    Alipay open-platform client (RSA2 / SHA256withRSA).

    Returns None / False instead of raising when the merchant keys are not
    configured, so the storefront falls back to the self-serve completion flow.
    """

    def __init__(self, settings: Settings):
        self.app_id = settings.ALIPAY_APP_ID
        self.gateway_url = settings.ALIPAY_GATEWAY_URL
        self.site_url = settings.SITE_URL.rstrip("/")
        self._private_key = None
        self._public_key = None

        if not settings.alipay_configured:
            return

        try:
            self._private_key = serialization.load_pem_private_key(
                _pem(settings.ALIPAY_PRIVATE_KEY, "PRIVATE KEY"), password=None
            )
            self._public_key = serialization.load_pem_public_key(
                _pem(settings.ALIPAY_PUBLIC_KEY, "PUBLIC KEY")
            )
        except ValueError:
            logger.error("alipay keys could not be loaded; payment disabled")
            self._private_key = None
            self._public_key = None

    @property
    def configured(self) -> bool:
        return self._private_key is not None and self._public_key is not None

    def sign(self, params: Mapping[str, object]) -> str:
        content = signing_content(params).encode("utf-8")
        sig = self._private_key.sign(content, padding.PKCS1v15(), hashes.SHA256())
        return base64.b64encode(sig).decode("ascii")

    def build_pay_url(
        self,
        *,
        order_no: str,
        amount: Decimal,
        subject: str,
        client_type: str = "pc",
    ) -> str | None:
        if not self.configured:
            return None

        method, product_code = _PRODUCT_CODES.get(client_type, _PRODUCT_CODES["pc"])
        total_amount = f"{Decimal(amount).quantize(Decimal('0.01'))}"

        biz_content = {
            "out_trade_no": order_no,
            "product_code": product_code,
            "total_amount": total_amount,
            "subject": subject,
            "body": subject,
        }
        params = {
            "app_id": self.app_id,
            "method": method,
            "format": "JSON",
            "charset": "utf-8",
            "sign_type": "RSA2",
            "timestamp": datetime.now(_ALIPAY_TZ).strftime("%Y-%m-%d %H:%M:%S"),
            "version": "1.0",
            "notify_url": f"{self.site_url}/payment/alipay/notify",
            "return_url": f"{self.site_url}/orders/pay-return",
            "biz_content": json.dumps(biz_content, ensure_ascii=False, separators=(",", ":")),
        }
        params["sign"] = self.sign(params)
        return f"{self.gateway_url}?{urlencode(params)}"

    def verify_notify_signature(self, payload: Mapping[str, str]) -> bool:
        if not self.configured:
            return False

        sign = payload.get("sign")
        if not sign:
            return False

        content = signing_content(payload, exclude=("sign", "sign_type")).encode("utf-8")
        try:
            self._public_key.verify(
                base64.b64decode(sign), content, padding.PKCS1v15(), hashes.SHA256()
            )
        except (InvalidSignature, ValueError):
            return False
        return True
