from __future__ import annotations

import argparse
import json
import logging
import sys
import time
from pathlib import Path
from typing import Any, Optional

import numpy as np

from core.composer_client import ComposerClientError
from core.composition_models import CompositionDocument
from core.config import get_settings
from core.engine import AudioEngine
from core.errors import CompositionError, EngineError
from core.generation_service import GenerationService
import core.output as output  # IMPORTANT: allow monkeypatch in tests
from core.utils import safe_filename, timestamped_filename


# exit codes (keep stable)
EXIT_OK = 0
EXIT_COLLABORATOR = 3
EXIT_ENGINE = 4
EXIT_BAD_ARGS = 5


def _print_err(msg: str) -> None:
    print(msg, file=sys.stderr)


def _read_json(path: Path) -> Any:
    return json.loads(path.read_text(encoding="utf-8"))


def _load_document(path_str: str) -> CompositionDocument:
    """File -> document. Raises ValueError / CompositionError for the caller to map to EXIT_BAD_ARGS."""
    path = Path(path_str)
    if not path.exists() or not path.is_file():
        raise ValueError(f"document not found: {path}")
    return CompositionDocument.parse(_read_json(path))


def _make_engine() -> AudioEngine:
    return AudioEngine(get_settings())


def _make_service(engine: AudioEngine) -> GenerationService:
    return GenerationService(engine)


def loop_seconds(doc: CompositionDocument, loop_bars: int) -> float:
    return loop_bars * doc.meter.beats_per_bar * 60.0 / doc.tempo


def render_document(engine: AudioEngine, doc: CompositionDocument, *, loops: int, tail_s: float) -> np.ndarray:
    """Load, loop, play and bounce `loops` loop lengths plus a release tail."""
    engine.load_composition(doc)
    engine.set_loop(True)
    engine.play()
    seconds = loops * loop_seconds(doc, engine.settings.loop_bars)
    audio = output.bounce(engine, seconds)
    engine.stop()
    tail = output.bounce(engine, tail_s)
    return np.concatenate((audio, tail))


def _wav_target(doc: CompositionDocument, out: Optional[str], out_dir: Optional[str]) -> Path:
    if out:
        return Path(out)
    base = Path(out_dir) if out_dir else get_settings().output_dir
    return base / timestamped_filename(safe_filename(doc.title), ".wav")


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="promptloop", description="PromptLoop CLI (composition documents -> audio)")
    p.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = p.add_subparsers(dest="cmd", required=True)

    # ------------------------------------------------------------
    # render: document -> WAV (offline, no device)
    # ------------------------------------------------------------
    r = sub.add_parser("render", help="Bounce a composition document to WAV")
    r.add_argument("doc", type=str, help="Path to composition .json")
    r.add_argument("--loops", type=int, default=2, help="How many loop iterations to render")
    r.add_argument("--tail", type=float, default=2.0, help="Seconds of release/reverb tail after the last loop")
    r.add_argument("--out", type=str, default="", help="Output .wav path (default: <out-dir>/<title>-<timestamp>.wav)")
    r.add_argument("--out-dir", dest="out_dir", default=None, help="Output directory (default: OUTPUT_DIR)")

    # ------------------------------------------------------------
    # generate: prompt -> document (-> optional render)
    # ------------------------------------------------------------
    g = sub.add_parser("generate", help="Prompt -> composition document via the generator")
    g.add_argument("prompt", type=str, help="Natural-language description of the music")
    g.add_argument("--out", type=str, default="", help="Output .json path (default: <out-dir>/<title>-<timestamp>.json)")
    g.add_argument("--out-dir", dest="out_dir", default=None, help="Output directory (default: OUTPUT_DIR)")
    g.add_argument("--render", action="store_true", help="Also bounce the generated document to WAV")
    g.add_argument("--loops", type=int, default=2, help="Loop iterations when --render")
    g.add_argument("--tail", type=float, default=2.0, help="Tail seconds when --render")

    # ------------------------------------------------------------
    # play: document -> sound card
    # ------------------------------------------------------------
    pl = sub.add_parser("play", help="Play a composition document on the audio device")
    pl.add_argument("doc", type=str, help="Path to composition .json")
    pl.add_argument("--seconds", type=float, default=0.0, help="Stop after N seconds (default: one loop)")
    pl.add_argument("--no-loop", dest="loop", action="store_false", help="Do not enable transport looping")

    # ------------------------------------------------------------
    # serve: HTTP control surface
    # ------------------------------------------------------------
    sv = sub.add_parser("serve", help="Run the FastAPI server")
    sv.add_argument("--host", default=None, help="Bind host (default: HOST)")
    sv.add_argument("--port", type=int, default=None, help="Bind port (default: PORT)")

    return p


# -------------------------------
# Commands
# -------------------------------
def cmd_render(args: argparse.Namespace) -> int:
    if args.loops < 1 or args.tail < 0:
        _print_err("--loops must be >= 1 and --tail >= 0")
        return EXIT_BAD_ARGS
    try:
        doc = _load_document(args.doc)
    except (ValueError, CompositionError) as e:
        _print_err(str(e))
        return EXIT_BAD_ARGS

    engine = _make_engine()
    try:
        audio = render_document(engine, doc, loops=args.loops, tail_s=args.tail)
        path = output.write_wav(_wav_target(doc, args.out, args.out_dir), audio, engine.sample_rate)
    except (EngineError, OSError) as e:
        _print_err(f"render failed: {e}")
        return EXIT_ENGINE
    finally:
        engine.dispose()

    print(str(path))
    return EXIT_OK


def cmd_generate(args: argparse.Namespace) -> int:
    if args.render and (args.loops < 1 or args.tail < 0):
        _print_err("--loops must be >= 1 and --tail >= 0")
        return EXIT_BAD_ARGS

    engine = _make_engine()
    service = _make_service(engine)
    try:
        try:
            doc = service.generate(args.prompt)
        except ValueError as e:
            _print_err(str(e))
            return EXIT_BAD_ARGS
        except ComposerClientError as e:
            _print_err(f"generation failed: {e}")
            return EXIT_COLLABORATOR

        print(f"title={doc.title}")
        print(f"tempo={doc.tempo} tracks={len(doc.tracks)}")

        target: Optional[Path] = None
        if args.out:
            target = Path(args.out)
        elif args.out_dir:
            target = Path(args.out_dir) / timestamped_filename(safe_filename(doc.title), ".json")

        try:
            json_path = service.save_document(doc, target)
            print(str(json_path))

            if args.render:
                audio = render_document(engine, doc, loops=args.loops, tail_s=args.tail)
                wav_path = output.write_wav(json_path.with_suffix(".wav"), audio, engine.sample_rate)
                print(str(wav_path))
        except (EngineError, OSError) as e:
            _print_err(f"output failed: {e}")
            return EXIT_ENGINE
    finally:
        service.close()
        engine.dispose()

    return EXIT_OK


def cmd_play(args: argparse.Namespace) -> int:
    try:
        doc = _load_document(args.doc)
    except (ValueError, CompositionError) as e:
        _print_err(str(e))
        return EXIT_BAD_ARGS

    s = get_settings()
    engine = _make_engine()
    driver = output.DeviceOutput(engine, block_size=s.block_size)
    try:
        engine.load_composition(doc)
        engine.set_loop(args.loop)
        driver.start()
        engine.play()
        seconds = args.seconds if args.seconds > 0 else loop_seconds(doc, s.loop_bars)
        print(f"playing {doc.title!r} for {seconds:.1f}s (Ctrl+C to stop)")
        time.sleep(seconds)
    except KeyboardInterrupt:
        pass
    except EngineError as e:
        _print_err(str(e))
        return EXIT_ENGINE
    finally:
        engine.stop()
        driver.stop()
        engine.dispose()
    return EXIT_OK


def cmd_serve(args: argparse.Namespace) -> int:
    import uvicorn

    s = get_settings()
    uvicorn.run("app:app", host=args.host or s.host, port=args.port or s.port)
    return EXIT_OK


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if not logging.getLogger().handlers:
        logging.basicConfig(
            level=logging.DEBUG if args.verbose else logging.WARNING,
            format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        )

    if args.cmd == "render":
        return cmd_render(args)
    if args.cmd == "generate":
        return cmd_generate(args)
    if args.cmd == "play":
        return cmd_play(args)
    if args.cmd == "serve":
        return cmd_serve(args)

    _print_err("Unknown command.")
    return EXIT_BAD_ARGS


if __name__ == "__main__":
    raise SystemExit(main())
