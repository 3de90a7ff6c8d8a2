from __future__ import annotations

import logging
import threading
from typing import Callable


logger = logging.getLogger(__name__)


class Cancellation:
    """
    取消令牌：所有阻塞等待（退避 sleep、分页间隔、心跳 tick）都通过 wait() 进行，
    流式读取则注册 on_cancel 回调（关闭连接）以打断阻塞的 read。
    """

    def __init__(self) -> None:
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._callbacks: list[Callable[[], None]] = []

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        with self._lock:
            if self._event.is_set():
                return
            self._event.set()
            callbacks = list(self._callbacks)
            self._callbacks.clear()
        for cb in callbacks:
            try:
                cb()
            except Exception:  # noqa: BLE001
                logger.exception("cancel callback failed")

    def wait(self, seconds: float) -> bool:
        """阻塞至多 seconds 秒；若期间被取消则提前返回 True。"""
        if seconds <= 0:
            return self._event.is_set()
        return self._event.wait(seconds)

    def on_cancel(self, callback: Callable[[], None]) -> Callable[[], None]:
        """
        注册取消回调，返回注销函数。

        若令牌已被取消，回调会被立即执行。
        """
        with self._lock:
            if not self._event.is_set():
                self._callbacks.append(callback)

                def _unregister() -> None:
                    with self._lock:
                        if callback in self._callbacks:
                            self._callbacks.remove(callback)

                return _unregister
        callback()
        return lambda: None
