"""有限回リトライポリシー (結果整合待ちのポーリング用)"""
import time
from dataclasses import dataclass, field
from typing import Callable, Optional, TypeVar

T = TypeVar("T")


@dataclass
class RetryPolicy:
    """
    最大試行回数と線形バックオフ (base_delay × 試行番号) を持つポーリング設定。

    sleep はテストで差し替え可能 (実際に待たずに待ち時間だけ記録する)。
    """

    max_attempts: int = 10
    base_delay: float = 0.2
    sleep: Callable[[float], None] = field(default=time.sleep, repr=False)

    def delay_for(self, attempt: int) -> float:
        return self.base_delay * attempt

    def poll(self, fetch: Callable[[], T], done: Callable[[T], bool]) -> tuple[Optional[T], int]:
        """
        done(fetch()) が真になるまで fetch を繰り返す。

        Returns:
            (最後に取得した値, 試行回数)。上限到達時も最後の値を返す (ブロックし続けない)
        """
        value = None
        attempts = 0
        while attempts < self.max_attempts:
            if attempts > 0:
                self.sleep(self.delay_for(attempts))
            value = fetch()
            attempts += 1
            if done(value):
                break
        return value, attempts


# 待ち合わせなし (1回だけ読む)
NO_WAIT = RetryPolicy(max_attempts=1, base_delay=0.0)
