#!/usr/bin/env python3
"""
Pigment Recipe Search - Flask API Server
========================================

使用方法:
    python app.py

環境変数:
    COLOR_MIXER_HOST       (既定 0.0.0.0)
    COLOR_MIXER_PORT       (既定 5000)
    COLOR_MIXER_TICK_MS    (既定 16)
    COLOR_MIXER_DEBUG      (1 で Flask のデバッグモード)
    COLOR_MIXER_LOG_LEVEL  (既定 INFO)
"""

import logging
import os
import threading

from flask import Flask, request, jsonify
from flask_cors import CORS
from werkzeug.exceptions import HTTPException

from color_mixer import describe_color, normalize_hex, rgb_to_hex, similarity
from palette import DEFAULT_PALETTE, DEFAULT_TARGET, build_palette, make_pigment, next_color_id, recipe_to_dict
from recipe_search import DEFAULT_TICK_INTERVAL, RecipeSearchEngine

logger = logging.getLogger(__name__)


def env_int(name: str, default: int) -> int:
    """整数の環境変数を読む（不正なら変数名つきの ValueError）"""
    value = os.environ.get(name)
    if value is None or not value.strip():
        return default
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"環境変数 {name} は整数で指定してください: {value!r}") from None


def tick_interval_from_env() -> float:
    tick_ms = env_int("COLOR_MIXER_TICK_MS", int(DEFAULT_TICK_INTERVAL * 1000))
    if tick_ms <= 0:
        raise ValueError(f"環境変数 COLOR_MIXER_TICK_MS は正の整数で指定してください: {tick_ms}")
    return tick_ms / 1000


class MixerState:
    """サーバー側で保持するパレットとターゲット（探索エンジン1つ）"""

    def __init__(self, engine=None, palette=DEFAULT_PALETTE, target=DEFAULT_TARGET):
        self.engine = engine if engine is not None else RecipeSearchEngine(tick_interval=tick_interval_from_env())
        self.palette = build_palette(palette)
        self.target = normalize_hex(target)
        self.lock = threading.Lock()

    def set_palette(self, palette):
        # 探索中のパレット変更は探索を止める
        self.engine.stop()
        self.palette = tuple(palette)

    def set_target(self, target: str):
        self.engine.stop()
        self.target = target


def create_app(state: MixerState = None) -> Flask:
    """Flaskアプリを作る（テストでは state を差し替える）"""
    app = Flask(__name__)
    CORS(app)
    app.config["MIXER_STATE"] = state if state is not None else MixerState()

    def current_state() -> MixerState:
        return app.config["MIXER_STATE"]

    @app.errorhandler(ValueError)
    def handle_value_error(e):
        return jsonify({"error": str(e)}), 400

    @app.errorhandler(Exception)
    def handle_unexpected(e):
        if isinstance(e, HTTPException):
            return jsonify({"error": e.description}), e.code
        logger.exception("APIでエラーが発生しました")
        return jsonify({"error": str(e)}), 500

    @app.route("/api/palette", methods=["GET"])
    def get_palette():
        """パレットを返す"""
        return jsonify([_palette_item(p) for p in current_state().palette])

    @app.route("/api/palette", methods=["PUT"])
    def replace_palette():
        """
        パレットを置き換える

        Request JSON:
            [{"id": 1, "hex": "#ff0000"}, ...]
        """
        data = _json_body()
        if not isinstance(data, list):
            raise ValueError("パレットは配列で指定してください")

        state = current_state()
        palette = build_palette(data)
        with state.lock:
            state.set_palette(palette)
        return jsonify([_palette_item(p) for p in palette])

    @app.route("/api/palette", methods=["POST"])
    def add_color():
        """
        パレットに色を追加する

        Request JSON:
            {"hex": "#00ff00"} または {"id": "green", "hex": "#00ff00"}
        """
        data = _json_body()
        if not isinstance(data, dict) or "hex" not in data:
            raise ValueError("'hex' を指定してください")

        state = current_state()
        with state.lock:
            color_id = data.get("id", next_color_id(state.palette))
            pigment = make_pigment(color_id, data["hex"])
            palette = build_palette(state.palette + (pigment,))
            state.set_palette(palette)
        return jsonify(_palette_item(pigment)), 201

    @app.route("/api/palette/<color_id>", methods=["DELETE"])
    def remove_color(color_id):
        """パレットから色を削除する（IDは整数としても照合）"""
        state = current_state()
        with state.lock:
            remaining = tuple(p for p in state.palette if str(p.id) != color_id)
            if len(remaining) == len(state.palette):
                return jsonify({"error": f"色が見つかりません: {color_id}"}), 404
            state.set_palette(remaining)
        return jsonify([_palette_item(p) for p in remaining])

    @app.route("/api/target", methods=["GET"])
    def get_target():
        """ターゲット色を返す"""
        return jsonify(describe_color(current_state().target))

    @app.route("/api/target", methods=["PUT"])
    def set_target():
        """
        ターゲット色を設定する

        Request JSON:
            {"hex": "#3b82f6"} または {"r": 59, "g": 130, "b": 246}
        """
        state = current_state()
        target = _color_from_json(_json_body())
        with state.lock:
            state.set_target(target)
        return jsonify(describe_color(target))

    @app.route("/api/search/start", methods=["POST"])
    def start_search():
        """
        探索を開始する（実行中なら再開）

        Request JSON:
            {"precision": false}
        """
        data = request.get_json(silent=True)
        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise ValueError("リクエストはオブジェクトで指定してください")
        precision = data.get("precision", False)
        if not isinstance(precision, bool):
            raise ValueError("'precision' は true / false で指定してください")

        state = current_state()
        with state.lock:
            state.engine.start(state.palette, state.target, precision=precision)
        return jsonify(_snapshot_to_dict(state))

    @app.route("/api/search/stop", methods=["POST"])
    def stop_search():
        """探索を停止する"""
        state = current_state()
        state.engine.stop()
        return jsonify(_snapshot_to_dict(state))

    @app.route("/api/search", methods=["GET"])
    def get_search():
        """
        現在の探索結果

        Response JSON:
            {
                "running": true,
                "precision": false,
                "mode": "normal",
                "progress": 87.5,
                "result": {"hex": "#2f5fd0", "rgb": [...], "lab": [...]},
                "recipe": [{"id": 2, "hex": "#0000ff", "parts": 6, "display_parts": 3, ...}],
                ...
            }
        """
        return jsonify(_snapshot_to_dict(current_state()))

    @app.route("/api/match", methods=["POST"])
    def match_colors():
        """
        2色の一致度（0〜100）

        Request JSON:
            {"a": "#3b82f6", "b": "#2f5fd0"}
        """
        data = _json_body()
        if not isinstance(data, dict) or "a" not in data or "b" not in data:
            raise ValueError("'a' と 'b' を指定してください")
        a = normalize_hex(data["a"])
        b = normalize_hex(data["b"])
        return jsonify({"a": a, "b": b, "match": round(similarity(a, b), 2)})

    return app


def _json_body():
    data = request.get_json(silent=True)
    if data is None:
        raise ValueError("JSONボディが必要です")
    return data


def _color_from_json(data) -> str:
    if not isinstance(data, dict):
        raise ValueError("'hex' または 'r', 'g', 'b' を指定してください")
    if "hex" in data:
        return normalize_hex(data["hex"])
    if all(k in data for k in ["r", "g", "b"]):
        rgb = [data["r"], data["g"], data["b"]]
        if not all(isinstance(v, int) and not isinstance(v, bool) and 0 <= v <= 255 for v in rgb):
            raise ValueError("r, g, b は 0〜255 の整数で指定してください")
        return rgb_to_hex(rgb)
    raise ValueError("'hex' または 'r', 'g', 'b' を指定してください")


def _palette_item(pigment) -> dict:
    item = describe_color(pigment.hex)
    item["id"] = pigment.id
    return item


def _snapshot_to_dict(state: MixerState) -> dict:
    snapshot = state.engine.snapshot
    return {
        "running": snapshot.running,
        "precision": snapshot.precision,
        "mode": snapshot.mode,
        "progress": round(snapshot.progress, 2),
        "target": state.target,
        "result": describe_color(snapshot.color),
        "recipe": recipe_to_dict(snapshot.recipe),
        "total_parts": snapshot.total_parts,
        "ticks": snapshot.ticks,
        "accepted": snapshot.accepted,
    }


if __name__ == "__main__":
    HOST = os.environ.get("COLOR_MIXER_HOST", "0.0.0.0")
    PORT = env_int("COLOR_MIXER_PORT", 5000)
    DEBUG = os.environ.get("COLOR_MIXER_DEBUG", "") == "1"
    LOG_LEVEL = os.environ.get("COLOR_MIXER_LOG_LEVEL", "INFO")

    logging.basicConfig(level=LOG_LEVEL, format="%(levelname)s: %(message)s")

    print("=" * 50)
    print("Pigment Recipe Search")
    print("=" * 50)
    print("\nサーバーを起動しています...")
    print(f"http://localhost:{PORT}/api/search で探索状況を確認できます")
    print("\n終了するには Ctrl+C を押してください")
    print("=" * 50)

    create_app().run(debug=DEBUG, host=HOST, port=PORT)
