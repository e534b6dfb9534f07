'''
 This module should not import any other order_engine modules to avoid circular imports !!!
 It should only be used to load environment variables and expose the engine settings.
'''
from dotenv import load_dotenv
import os


class OrderEnv:
    __env_loaded = False

    __api_base_url = "https://api-dev.overinspect.com.br"
    __api_token = None
    __api_timeout = 30.0
    __api_retries = 0
    __api_retry_delay_ms = 300
    __attachment_path_category = "service_order"
    __office_viewer_url = "https://view.officeapps.live.com/op/embed.aspx?src="

    @staticmethod
    def get_api_base_url() -> str:
        return OrderEnv.__api_base_url.rstrip("/")

    @staticmethod
    def get_api_token():
        return OrderEnv.__api_token

    @staticmethod
    def get_api_timeout() -> float:
        return OrderEnv.__api_timeout

    @staticmethod
    def get_api_retries() -> int:
        return OrderEnv.__api_retries

    @staticmethod
    def get_api_retry_delay_ms() -> int:
        return OrderEnv.__api_retry_delay_ms

    @staticmethod
    def get_attachment_path_category() -> str:
        return OrderEnv.__attachment_path_category

    @staticmethod
    def get_office_viewer_url() -> str:
        return OrderEnv.__office_viewer_url

    @staticmethod
    def is_loaded() -> bool:
        return OrderEnv.__env_loaded

    @staticmethod
    def load_env(env_file: str = None, force: bool = False):
        if OrderEnv.__env_loaded and not force:
            return
        if not env_file:
            env_file = os.getenv("ENV_FILE", "./.env")
        if os.path.isfile(env_file):
            load_dotenv(env_file)
        # a missing file is fine, the process environment may already carry everything

        OrderEnv.__api_base_url = os.getenv("ORDER_API_BASE_URL", OrderEnv.__api_base_url)
        OrderEnv.__api_token = os.getenv("ORDER_API_TOKEN", OrderEnv.__api_token)
        OrderEnv.__api_timeout = OrderEnv.__read_float("ORDER_API_TIMEOUT", OrderEnv.__api_timeout)
        OrderEnv.__api_retries = OrderEnv.__read_int("ORDER_API_RETRIES", OrderEnv.__api_retries)
        OrderEnv.__api_retry_delay_ms = OrderEnv.__read_int("ORDER_API_RETRY_DELAY_MS", OrderEnv.__api_retry_delay_ms)
        OrderEnv.__attachment_path_category = os.getenv("ATTACHMENT_PATH_CATEGORY", OrderEnv.__attachment_path_category)
        OrderEnv.__office_viewer_url = os.getenv("OFFICE_VIEWER_URL", OrderEnv.__office_viewer_url)
        OrderEnv.__env_loaded = True

    @staticmethod
    def __read_int(name: str, default: int) -> int:
        raw = os.getenv(name)
        if raw is None or raw.strip() == "":
            return default
        try:
            return int(raw)
        except ValueError:
            raise ValueError(f"Environment variable {name} must be an integer, got '{raw}'")

    @staticmethod
    def __read_float(name: str, default: float) -> float:
        raw = os.getenv(name)
        if raw is None or raw.strip() == "":
            return default
        try:
            return float(raw)
        except ValueError:
            raise ValueError(f"Environment variable {name} must be a number, got '{raw}'")
