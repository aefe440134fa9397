import time
import hmac
import hashlib
import json
import threading
import requests
from typing import Any, Dict, Iterable, List, Optional
from portfolio_dashboard.config.settings import settings
from portfolio_dashboard.config.logging import logger
from portfolio_dashboard.core.exceptions import ConfigurationError, DataSourceError, ExchangeApiError
from portfolio_dashboard.core.models import Trade
from .mapper import ExmoMapper

class ExmoClient:
    """
    EXMO v1.1 API 客戶端。
    負責處理 nonce、簽章、請求，並將資料交給 Mapper 轉換。
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        api_secret: Optional[str] = None,
        base_url: Optional[str] = None,
        session: Optional[requests.Session] = None,
    ):
        self.api_key = api_key if api_key is not None else settings.EXMO_API_KEY
        self.api_secret = api_secret if api_secret is not None else settings.EXMO_API_SECRET
        if not self.api_key or not self.api_secret:
            raise ConfigurationError("EXMO_API_KEY / EXMO_API_SECRET is not set")

        self.base_url = (base_url or settings.EXMO_BASE_URL).rstrip("/") + "/"
        self.timeout = (settings.EXMO_CONNECT_TIMEOUT, settings.EXMO_READ_TIMEOUT)
        self.session = session or requests.Session()

        # nonce 必須嚴格遞增；以啟動時的毫秒時間為起點，多執行緒共用
        self._nonce = int(time.time() * 1000)
        self._nonce_lock = threading.Lock()

    def _next_nonce(self) -> int:
        with self._nonce_lock:
            self._nonce += 1
            return self._nonce

    def _generate_signature(self, post_data: str) -> str:
        hash = hmac.new(
            bytes(self.api_secret, "utf-8"),
            post_data.encode("utf-8"),
            hashlib.sha512
        )
        return hash.hexdigest()

    @staticmethod
    def _build_query(params: Dict[str, Any]) -> str:
        return "&".join([f"{k}={v}" for k, v in params.items()])

    def post(self, method: str, params: Optional[Dict[str, Any]] = None) -> str:
        """
        送出已簽章的 POST 請求並回傳原始文字。
        連線失敗、逾時、HTTP 錯誤都會轉成 DataSourceError。
        """
        payload = dict(params or {})
        payload["nonce"] = self._next_nonce()

        post_data = self._build_query(payload)
        headers = {
            "Key": self.api_key,
            "Sign": self._generate_signature(post_data),
            "Content-Type": "application/x-www-form-urlencoded",
        }
        url = f"{self.base_url}{method}"

        try:
            response = self.session.post(url, data=post_data, headers=headers, timeout=self.timeout)
            response.raise_for_status()
            return response.text
        except requests.exceptions.RequestException as e:
            logger.error(f"EXMO Connection Error ({method}): {e}")
            raise DataSourceError(f"Failed to connect to EXMO ({method}): {e}")

    def _post_json(self, method: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        text = self.post(method, params)
        try:
            data = json.loads(text)
        except json.JSONDecodeError:
            raise DataSourceError(f"Failed to decode JSON response from EXMO ({method}). Response text: {text[:200]}")

        if not isinstance(data, dict):
            raise DataSourceError(f"Unexpected response shape from EXMO ({method}): {type(data).__name__}")

        # EXMO 的業務錯誤以 HTTP 200 + error 欄位回傳
        error = data.get("error")
        if error or data.get("result") is False:
            raise ExchangeApiError(f"EXMO API Error: {error or 'request rejected'}")
        return data

    def get_user_info(self) -> Dict[str, Dict[str, float]]:
        """獲取帳戶可用與凍結餘額"""
        raw_data = self._post_json("user_info")
        return ExmoMapper.to_balances(raw_data)

    def get_ticker(self) -> Dict[str, Any]:
        """獲取所有交易對的行情 {pair: {...}}"""
        return self._post_json("ticker")

    def get_pair_settings(self) -> Dict[str, Any]:
        """獲取所有可交易的交易對設定 {pair: {...}}"""
        return self._post_json("pair_settings")

    def get_user_trades(self, pairs: Iterable[str], limit: int = 1000) -> List[Trade]:
        """獲取指定交易對的成交紀錄，並轉換為 Trade 物件清單"""
        pair_list = ",".join(pairs)
        if not pair_list:
            return []
        raw_data = self._post_json("user_trades", {"pair": pair_list, "limit": limit})
        return ExmoMapper.to_trades(raw_data)
