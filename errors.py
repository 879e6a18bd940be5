"""
工作流程錯誤類別

每個錯誤帶有 HTTP 狀態碼和錯誤代碼,
由 app.py 註冊的 error handler 轉成 JSON 回應。
"""


class TrackFlowError(Exception):
    """所有工作流程錯誤的基底類別"""
    status_code = 500
    error = 'internal_server_error'

    def __init__(self, message, detail=None):
        super().__init__(message)
        self.message = message
        self.detail = detail

    def to_dict(self, include_detail=False):
        payload = {
            'error': self.error,
            'message': self.message,
            'status': self.status_code
        }
        if include_detail and self.detail:
            payload['details'] = self.detail
        return payload


class Unauthenticated(TrackFlowError):
    status_code = 401
    error = 'authorization_required'


class InvalidInput(TrackFlowError):
    status_code = 400
    error = 'validation_error'


class DuplicatePending(TrackFlowError):
    status_code = 400
    error = 'duplicate_pending'


class Forbidden(TrackFlowError):
    status_code = 403
    error = 'forbidden'


class NotFound(TrackFlowError):
    status_code = 404
    error = 'not_found'


class InternalError(TrackFlowError):
    """Store 或外部元件失敗, 訊息不含內部細節"""
    status_code = 500
    error = 'internal_server_error'
