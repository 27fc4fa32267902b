#!/usr/bin/env python3
"""
Recipe Search Engine
====================
パレットの顔料を整数の「部数」で混ぜて目標色を再現する配合を探索する

4本のブランチ（候補配合）を並行して局所探索し、1ティックあたり500回の試行で
ランダムな配合・1色だけ±1した配合を評価する。一致度が上がるか、同じ一致度で
部数が減れば採用。精密モードでは一致度95超の範囲で、少しの劣化と引き換えに
部数を大きく減らす「簡略化ジャンプ」も確率的に許す。

使用方法:
    python recipe_search.py "#3b82f6"
    python recipe_search.py 59 130 246
    python recipe_search.py "#3b82f6" --precision
"""

import logging
import sys
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional

import numpy as np

from color_mixer import EMPTY_MIX, hex_to_rgb, mix, normalize_hex, rgb_to_hex, similarity
from palette import DEFAULT_PALETTE, RecipeEntry, build_palette, simplify_parts

logger = logging.getLogger(__name__)

# ブランチ数と1ティックあたりの試行回数
BRANCH_COUNT = 4
TRIALS_PER_TICK = 500

# 初期配合の部数の範囲（両端含む）
SEED_PARTS_RANGE = (1, 3)

# ティック間隔（秒）。約60Hz
DEFAULT_TICK_INTERVAL = 0.016

PERFECT_MATCH = 100.0


@dataclass(frozen=True)
class SearchSettings:
    """探索モードごとの調整値"""

    name: str
    # 乱数がこの値を超えたら全色ランダムな配合を試す（探索）。以下なら±1の微調整（活用）
    explore_threshold: float
    # ランダム配合での1色あたりの最大部数
    max_random_parts: int
    # 合計部数の上限
    parts_cap: int
    # チャンピオン選出で同点なら部数の少ない方を選ぶ
    prefer_fewer_parts: bool
    # 一致度100で自動停止
    auto_stop: bool
    # 簡略化ジャンプ
    leap_enabled: bool = False
    leap_match_floor: float = 95.0
    leap_max_drop: float = 20.0
    leap_parts_ratio: float = 0.3
    leap_probability: float = 0.05


NORMAL_SETTINGS = SearchSettings(
    name="normal",
    explore_threshold=0.95,
    max_random_parts=5,
    parts_cap=10,
    prefer_fewer_parts=False,
    auto_stop=True,
)

PRECISION_SETTINGS = SearchSettings(
    name="precision",
    explore_threshold=0.80,
    max_random_parts=50,
    parts_cap=1000,
    prefer_fewer_parts=True,
    auto_stop=False,
    leap_enabled=True,
)


@dataclass(frozen=True)
class Branch:
    """探索中の候補配合1本"""

    parts: tuple
    color: str
    match: float

    @property
    def total_parts(self) -> int:
        return sum(self.parts)


@dataclass(frozen=True)
class SearchSnapshot:
    """外部に公開する探索結果（不変）"""

    recipe: tuple = ()
    color: str = EMPTY_MIX
    progress: float = 0.0
    running: bool = False
    precision: bool = False
    ticks: int = 0
    accepted: int = 0

    @property
    def total_parts(self) -> int:
        return sum(entry.parts for entry in self.recipe)

    @property
    def mode(self) -> str:
        if not self.running:
            return "idle"
        return PRECISION_SETTINGS.name if self.precision else NORMAL_SETTINGS.name


class SearchSession:
    """
    1回の探索の状態（パレットとターゲットは開始時に固定）

    Args:
        palette: PigmentColor のタプル
        target: ターゲットのHEX
        settings: NORMAL_SETTINGS / PRECISION_SETTINGS
        rng: numpy.random.Generator
        mix_fn: [(HEX, 部数), ...] -> HEX
        score_fn: (HEX, HEX) -> 0〜100
    """

    def __init__(self, palette, target: str, settings: SearchSettings, rng,
                 mix_fn: Callable = mix, score_fn: Callable = similarity):
        self.palette = tuple(palette)
        self.target = target
        self.settings = settings
        self.rng = rng
        self.mix_fn = mix_fn
        self.score_fn = score_fn
        self.running = True
        self.ticks = 0
        self.accepted = 0

        low, high = SEED_PARTS_RANGE
        self.branches = [
            self.evaluate(self.rng.integers(low, high + 1, size=len(self.palette)))
            for _ in range(BRANCH_COUNT)
        ]
        # 同点なら先のブランチ
        self.best = max(self.branches, key=lambda branch: branch.match)

    @property
    def precision(self) -> bool:
        return self.settings is PRECISION_SETTINGS

    def evaluate(self, parts) -> Branch:
        """配合を混色して採点する"""
        parts = tuple(int(p) for p in parts)
        color = self.mix_fn([(p.hex, n) for p, n in zip(self.palette, parts)])
        return Branch(parts, color, self.score_fn(color, self.target))

    def propose(self, parent: Branch) -> tuple:
        """試行配合（部数のタプル）を作る"""
        if self.rng.random() > self.settings.explore_threshold:
            return tuple(int(n) for n in self.rng.integers(
                0, self.settings.max_random_parts + 1, size=len(self.palette)))

        parts = list(parent.parts)
        index = int(self.rng.integers(len(parts)))
        nudge = 1 if self.rng.random() > 0.5 else -1
        parts[index] = max(0, parts[index] + nudge)
        return tuple(parts)

    def should_adopt(self, parent: Branch, trial: Branch) -> bool:
        """試行配合でブランチを置き換えるか"""
        if trial.match > parent.match:
            return True
        if trial.match == parent.match:
            return trial.total_parts < parent.total_parts

        settings = self.settings
        if not settings.leap_enabled or trial.match <= settings.leap_match_floor:
            return False

        # 簡略化ジャンプ: 少しの劣化で部数が大きく減るなら、まれに採用
        match_drop = parent.match - trial.match
        parts_saved = parent.total_parts - trial.total_parts
        if match_drop < settings.leap_max_drop and parts_saved > parent.total_parts * settings.leap_parts_ratio:
            return self.rng.random() > 1.0 - settings.leap_probability
        return False

    def improves_best(self, trial: Branch) -> bool:
        """公開中のベストを更新するか（一致度が上、または同点で部数が少ない）"""
        if trial.match > self.best.match:
            return True
        return trial.match == self.best.match and trial.total_parts < self.best.total_parts

    def champion(self) -> Branch:
        """全ブランチから公開するチャンピオンを選ぶ"""
        champion = self.branches[0]
        for branch in self.branches[1:]:
            if branch.match > champion.match:
                champion = branch
            elif (self.settings.prefer_fewer_parts and branch.match == champion.match
                  and branch.total_parts < champion.total_parts):
                champion = branch
        return champion

    def tick(self) -> bool:
        """
        1ティック分（TRIALS_PER_TICK 回）の試行を行う

        Returns:
            公開中のベストが更新されたら True
        """
        self.ticks += 1
        if not self.palette:
            return False

        cap = self.settings.parts_cap
        improved = False

        for _ in range(TRIALS_PER_TICK):
            index = int(self.rng.integers(len(self.branches)))
            parent = self.branches[index]

            parts = self.propose(parent)
            total = sum(parts)
            if total == 0 or total > cap:
                continue

            trial = self.evaluate(parts)
            if not self.should_adopt(parent, trial):
                continue

            self.branches[index] = trial
            self.accepted += 1
            if self.improves_best(trial):
                improved = True

        if improved:
            self.best = self.champion()
        return improved

    @property
    def finished(self) -> bool:
        return self.settings.auto_stop and self.best.match >= PERFECT_MATCH

    def recipe(self) -> tuple:
        return tuple(
            RecipeEntry(p.id, p.hex, n) for p, n in zip(self.palette, self.best.parts)
        )


class TickScheduler:
    """
    一定間隔でコールバックを呼ぶデーモンスレッド

    ティックが間隔より長引いた場合は遅れを取り戻さず、次の間隔から再開する。
    """

    def __init__(self, callback: Callable[[], None], interval: float):
        self.interval = interval
        self._callback = callback
        self._cancelled = threading.Event()
        self._thread = threading.Thread(target=self._loop, name="recipe-search-ticker", daemon=True)

    def start(self):
        self._thread.start()

    def cancel(self, wait: bool = True):
        self._cancelled.set()
        if wait and self._thread.is_alive() and threading.current_thread() is not self._thread:
            self._thread.join()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def _loop(self):
        next_time = time.monotonic() + self.interval
        while not self._cancelled.wait(max(0.0, next_time - time.monotonic())):
            self._callback()
            next_time += self.interval
            now = time.monotonic()
            if next_time < now:
                next_time = now


class RecipeSearchEngine:
    """
    探索のライフサイクル（Idle -> Running -> Idle）と公開スナップショットを管理する

    tick_interval を指定すると start() でティック用スレッドを起動する。
    None の場合は呼び出し側が tick() / run() で進める。
    """

    def __init__(self, tick_interval: Optional[float] = None, rng=None, seed=None,
                 mix_fn: Callable = mix, score_fn: Callable = similarity):
        self.tick_interval = tick_interval
        self.rng = rng if rng is not None else np.random.default_rng(seed)
        self.mix_fn = mix_fn
        self.score_fn = score_fn

        self._lock = threading.RLock()
        self._session: Optional[SearchSession] = None
        self._scheduler: Optional[TickScheduler] = None
        self._snapshot = SearchSnapshot()
        self._listeners = []

    @property
    def snapshot(self) -> SearchSnapshot:
        return self._snapshot

    @property
    def running(self) -> bool:
        return self._snapshot.running

    @property
    def precision(self) -> bool:
        return self._snapshot.precision

    @property
    def session(self) -> Optional[SearchSession]:
        return self._session

    def subscribe(self, callback: Callable[[SearchSnapshot], None]) -> Callable[[], None]:
        """公開スナップショットの更新を購読する。戻り値を呼ぶと解除"""
        self._listeners.append(callback)

        def unsubscribe():
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe

    def start(self, palette, target: str, precision: bool = False) -> SearchSnapshot:
        """
        探索を開始する（実行中なら停止してから再開）

        Args:
            palette: PigmentColor または {"id", "hex"} の並び
            target: ターゲットのHEX
            precision: 精密モード

        Raises:
            ValueError: パレットやターゲットが不正
        """
        palette = build_palette(palette)
        target = normalize_hex(target)
        settings = PRECISION_SETTINGS if precision else NORMAL_SETTINGS

        with self._lock:
            if self._session is not None:
                logger.info("探索中に開始要求: 現在の探索を停止して再開します")
                self._halt()

            session = SearchSession(palette, target, settings, self.rng,
                                    mix_fn=self.mix_fn, score_fn=self.score_fn)
            self._session = session
            snapshot = self._publish(session)
            logger.info(
                "探索開始: mode=%s colors=%d target=%s initial=%.2f",
                settings.name, len(palette), target, session.best.match,
            )

            if self.tick_interval is not None:
                self._scheduler = TickScheduler(lambda: self._scheduled_tick(session), self.tick_interval)
                self._scheduler.start()

        self._notify(snapshot)
        return snapshot

    def stop(self) -> SearchSnapshot:
        """探索を停止する（Idle なら何もしない）。実行中のティックは最後まで走る"""
        with self._lock:
            if self._session is None:
                return self._snapshot
            snapshot = self._halt()
            logger.info("探索停止: progress=%.2f", snapshot.progress)

        self._notify(snapshot)
        return snapshot

    def tick(self) -> bool:
        """
        1ティック進める

        Returns:
            公開中のベストが更新されたら True（Idle なら False）
        """
        with self._lock:
            session = self._session
        if session is None:
            return False
        return self._tick_session(session)

    def run(self, ticks: int) -> SearchSnapshot:
        """同期的に最大 ticks 回進める（自動停止したらそこで終わる）"""
        for _ in range(ticks):
            if self._session is None:
                break
            self.tick()
        return self._snapshot

    def _scheduled_tick(self, session: SearchSession):
        try:
            self._tick_session(session)
        except Exception:
            logger.exception("探索ティックでエラーが発生しました")
            with self._lock:
                if self._session is not session:
                    return
                snapshot = self._halt()
            self._notify(snapshot)

    def _tick_session(self, session: SearchSession) -> bool:
        notify = None
        with self._lock:
            # 停止・再開済みの古いセッションは無視
            if session is not self._session or not session.running:
                return False

            improved = session.tick()
            if improved:
                logger.debug(
                    "ベスト更新: match=%.4f parts=%d color=%s",
                    session.best.match, session.best.total_parts, session.best.color,
                )

            if session.finished:
                logger.info("一致度100に到達: 探索を自動停止します (ticks=%d)", session.ticks)
                notify = self._halt()
            else:
                snapshot = self._publish(session)
                if improved:
                    notify = snapshot

        if notify is not None:
            self._notify(notify)
        return improved

    def _publish(self, session: SearchSession) -> SearchSnapshot:
        self._snapshot = SearchSnapshot(
            recipe=session.recipe(),
            color=session.best.color,
            progress=session.best.match,
            running=session.running,
            precision=session.precision,
            ticks=session.ticks,
            accepted=session.accepted,
        )
        return self._snapshot

    def _halt(self) -> SearchSnapshot:
        """ロック内で呼ぶ。セッションを終了して Idle のスナップショットを公開"""
        session = self._session
        if self._scheduler is not None:
            self._scheduler.cancel(wait=False)
            self._scheduler = None

        if session is None:
            return self._snapshot

        session.running = False
        self._session = None
        # 精密モードのフラグは停止時に解除
        self._snapshot = SearchSnapshot(
            recipe=session.recipe(),
            color=session.best.color,
            progress=session.best.match,
            running=False,
            precision=False,
            ticks=session.ticks,
            accepted=session.accepted,
        )
        return self._snapshot

    def _notify(self, snapshot: SearchSnapshot):
        for callback in list(self._listeners):
            callback(snapshot)


def print_result(snapshot: SearchSnapshot, target: str):
    """結果をコンソールに出力"""
    print("\n" + "=" * 50)
    print("Pigment Recipe Search")
    print("=" * 50)
    print(f"\n目標色: {target}")
    print(f"RGB: {hex_to_rgb(target).tolist()}")

    active = [entry for entry in snapshot.recipe if entry.parts > 0]
    display = simplify_parts([entry.parts for entry in active])
    total = sum(display)

    print(f"\n--- 配合 ({len(active)}色使用) ---")
    for entry, parts in sorted(zip(active, display), key=lambda x: -x[1]):
        percent = parts / total * 100
        bar = "█" * int(percent / 5) + "░" * (20 - int(percent / 5))
        print(f"{entry.hex} (id={entry.color_id}): {bar} {parts}部")

    print(f"\n再現色: {snapshot.color}")
    print(f"一致度: {snapshot.progress:.2f}% (ticks={snapshot.ticks})")
    print("=" * 50)


CLI_TICKS = 120


def main():
    """メイン関数"""
    args = [arg for arg in sys.argv[1:] if arg != "--precision"]
    precision = len(args) != len(sys.argv) - 1

    if not args:
        print("使用方法:")
        print('  python recipe_search.py "#3b82f6" [--precision]')
        print("  python recipe_search.py 59 130 246 [--precision]")
        sys.exit(1)

    logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")

    try:
        if len(args) == 1:
            target = normalize_hex(args[0])
        elif len(args) == 3:
            target = normalize_hex(rgb_to_hex([int(v) for v in args]))
        else:
            raise ValueError("引数が不正です")
    except ValueError as e:
        print(f"エラー: {e}")
        sys.exit(1)

    engine = RecipeSearchEngine()
    engine.start(DEFAULT_PALETTE, target, precision=precision)
    engine.run(CLI_TICKS)
    snapshot = engine.stop()
    print_result(snapshot, target)


if __name__ == "__main__":
    main()
