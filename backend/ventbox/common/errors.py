# ventbox/common/errors.py


class VentboxError(Exception):
    """
    매칭/세션 코어의 모든 에러의 부모.
    code 는 HTTP/WS 응답의 error.code 로 그대로 나간다.
    """

    code = "VENTBOX_ERROR"
    title = "Error"
    retryable = False

    def __init__(self, message: str = "", *, code: str = None):
        super().__init__(message)
        self.message = message or self.__class__.__name__
        if code:
            self.code = code


class ValidationError(VentboxError):
    # 입력 오류: store 호출 전에 로컬에서 거른다
    code = "VALIDATION_ERROR"
    title = "Input Required"


class ConflictError(VentboxError):
    # 매칭 레이스에서 짐 (다른 클라이언트가 먼저 queue entry 를 소비함)
    code = "MATCH_CONFLICT"

    def __init__(self, message: str = "", *, stale_entry_ids=()):
        super().__init__(message or "queue entry already consumed")
        self.stale_entry_ids = tuple(stale_entry_ids)


class StoreError(VentboxError):
    code = "STORE_ERROR"
    title = "Connection Error"
    retryable = True


class SubscriptionError(StoreError):
    code = "SUBSCRIPTION_ERROR"
    title = "Queue Error"


class MatchTimeoutError(VentboxError):
    code = "NO_MATCH"
    title = "No Match Found"
    retryable = True


class TransportError(VentboxError):
    code = "TRANSPORT_ERROR"
    title = "Connection Failed"
    retryable = True


class AuthenticationRequired(VentboxError):
    code = "UNAUTHORIZED"
    title = "Authentication Required"
