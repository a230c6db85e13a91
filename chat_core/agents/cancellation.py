"""单次请求的取消令牌。"""

import threading
from typing import Optional


class CancellationToken:
    """active -> cancelled 的单向信号。

    由发起请求的一方（ChatSession）持有，只读共享给 ChatAgent 与 Provider。
    取消是协作式的：持有方在每个挂起点（每收到一个 chunk）检查一次。
    """

    def __init__(self) -> None:
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._reason: Optional[str] = None

    def cancel(self, reason: str = "cancelled") -> bool:
        """取消令牌。重复调用无副作用，返回本次调用是否真正触发了取消。"""

        with self._lock:
            if self._event.is_set():
                return False
            self._reason = reason
            self._event.set()
            return True

    def is_cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> Optional[str]:
        return self._reason

    def __repr__(self) -> str:
        state = f"cancelled({self._reason!r})" if self.is_cancelled() else "active"
        return f"<CancellationToken {state}>"
