class AppError(Exception):
    """所有應用程式自定義錯誤的基類"""
    pass

class ConfigurationError(AppError):
    """設定錯誤 (如缺少 API 金鑰)"""
    pass

class DataSourceError(AppError):
    """資料來源錯誤 (如 EXMO API 連線失敗、逾時、回應無法解析)"""
    pass

class ExchangeApiError(DataSourceError):
    """交易所回應成功，但內容帶有業務錯誤 (如無效的交易對)"""
    pass
