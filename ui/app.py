from __future__ import annotations

import argparse
import json
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Tuple

if __package__ in (None, ""):
    sys.path.append(str(Path(__file__).resolve().parents[1]))

from cwsim.audio import AudioBackend, NullAudio, StreamAudio
from cwsim.callsign_pool import load_callsigns_file
from cwsim.clock import ManualClock
from cwsim.config import AppConfig, get_inputs, load_config, save_config
from cwsim.engine import ActionResult, ContactStateMachine
from cwsim.errors import InvalidConfiguration
from cwsim.modes import MODE_NAMES, load_protocols
from cwsim.stations import StationGenerator

try:
    import sounddevice as sd
except Exception:  # pragma: no cover - optional runtime dependency
    sd = None


HELP_TEXT = "Commands: /cq /tu [info1] [info2] /stop /reset /mode NAME /qrn LEVEL /status /export /quit"


def list_output_devices() -> List[Tuple[int, str]]:
    if sd is None:
        return []
    outputs: List[Tuple[int, str]] = []
    for i, d in enumerate(sd.query_devices()):
        if d.get("max_output_channels", 0) > 0:
            outputs.append((i, d.get("name", f"device-{i}")))
    return outputs


def parse_command(line: str) -> Tuple[str, List[str]]:
    """'/tu bob 12' -> ('tu', ['bob', '12']); anything not starting with '/' is a send."""
    text = line.strip()
    if not text.startswith("/"):
        return "send", [text]
    parts = text[1:].split()
    if not parts:
        return "send", [""]
    return parts[0].lower(), parts[1:]


def build_engine(cfg: AppConfig, log: Callable[[str], None] = print) -> ContactStateMachine:
    protocols, warning = load_protocols(cfg.session.modes_file)
    if warning:
        log(f"WARN {warning}")

    pool = []
    calls_file = cfg.callers.callsigns_file
    if calls_file:
        try:
            pool = load_callsigns_file(calls_file)
            log(f"INFO Loaded {len(pool)} callsigns from {calls_file}")
        except OSError as exc:
            log(f"WARN Could not read {calls_file} ({exc}); using random callsigns.")

    audio: AudioBackend
    if cfg.audio.backend == "null":
        audio = NullAudio(sample_rate=cfg.audio.sample_rate, qrn=cfg.session.qrn)
    else:
        stream = StreamAudio(
            sample_rate=cfg.audio.sample_rate,
            blocksize=cfg.audio.blocksize,
            device=cfg.audio.output_device,
            qrn=cfg.session.qrn,
        )
        stream.start()
        audio = stream

    return ContactStateMachine(
        audio=audio,
        generator=StationGenerator(pool),
        inputs_provider=lambda: get_inputs(cfg),
        protocols=protocols,
        mode=cfg.session.mode,
    )


def print_result(result: ActionResult, out: Callable[[str], None] = print) -> None:
    for err in result.errors:
        out(f"ERR {err}")
    for info in result.info:
        out(f"INFO {info}")
    for tx in result.transmissions:
        who = "you" if tx.is_you else tx.sender
        out(f"TX [{tx.start:7.2f}-{tx.end:7.2f}] {who}: {tx.text}")
    if result.record is not None:
        rec = result.record
        extra = f"  {rec.exchange_info}" if rec.exchange_info else ""
        out(f"LOG #{rec.sequence} {rec.callsign} {rec.wpm} WPM, {rec.attempts} attempt(s), {rec.elapsed_seconds:.1f}s{extra}")


def run_console(
    engine: ContactStateMachine,
    cfg: AppConfig,
    read_line: Callable[[str], str] = input,
    out: Callable[[str], None] = print,
) -> int:
    out(f"Mode: {engine.session.mode}. {HELP_TEXT}")
    while True:
        try:
            line = read_line("tx> ")
        except (EOFError, KeyboardInterrupt):
            out("")
            break
        name, args = parse_command(line)
        if name == "quit":
            break
        if name == "help":
            out(HELP_TEXT)
            continue
        if name == "status":
            s = engine.session
            out(
                f"state: {s.state.value}  stations: {engine.stations_on_frequency}  "
                f"attempts: {s.attempts}  contacts: {s.total_contacts}  busy: {engine.get_audio_lock()}"
            )
            continue
        if name == "export":
            out(f"Exported to {export_session(engine)}")
            continue
        if name == "qrn":
            try:
                engine.set_qrn(args[0] if args else "")
                cfg.session.qrn = engine.audio.noise.level
            except InvalidConfiguration as exc:
                out(f"ERR {exc}")
            continue

        if name == "send":
            result = engine.send(args[0])
        elif name == "cq":
            result = engine.call()
        elif name == "tu":
            result = engine.tu(*(args + ["", ""])[:2])
        elif name == "stop":
            result = engine.stop()
        elif name == "reset":
            result = engine.reset()
        elif name == "mode":
            result = engine.change_mode(args[0] if args else "")
            if result.accepted:
                cfg.session.mode = engine.session.mode
        else:
            out(f"ERR Unknown command /{name}. {HELP_TEXT}")
            continue

        print_result(result, out)
        clock = engine.audio.clock
        if isinstance(clock, ManualClock):
            # nothing is audible offline; jump to the end of what was scheduled
            clock.advance_to(engine.audio.lock.value)
    return 0


def export_session(engine: ContactStateMachine, out_dir: Path = Path("logs")) -> Path:
    out_dir.mkdir(exist_ok=True)
    stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
    out_file = out_dir / f"cw_session_{stamp}.json"
    out_file.write_text(json.dumps(engine.export_session(), indent=2), encoding="utf-8")
    return out_file


def build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="CW contact simulator")
    p.add_argument("--config", default="config.yaml", help="YAML config path.")
    p.add_argument("--list-devices", action="store_true", help="List audio output devices and exit.")
    p.add_argument("--output-device", type=int, default=None, help="Output device index.")
    p.add_argument("--null-audio", action="store_true", help="Run without sound output.")
    p.add_argument("--mode", choices=list(MODE_NAMES), default=None, help="Operating mode.")
    p.add_argument("--my-call", default=None, help="Your callsign.")
    p.add_argument("--wpm", type=int, default=None, help="Your sending speed.")
    p.add_argument("--max-stations", type=int, default=None, help="Max stations answering each CQ.")
    p.add_argument("--calls-file", default=None, help="Path to callsign file.")
    return p


def _apply_cli_overrides(cfg: AppConfig, args: argparse.Namespace) -> None:
    if args.output_device is not None:
        cfg.audio.output_device = args.output_device
    if args.null_audio:
        cfg.audio.backend = "null"
    if args.mode:
        cfg.session.mode = args.mode
    if args.my_call:
        cfg.station.callsign = args.my_call.upper()
    if args.wpm is not None:
        cfg.station.wpm = args.wpm
    if args.max_stations is not None:
        cfg.callers.max_stations = max(1, int(args.max_stations))
    if args.calls_file:
        cfg.callers.callsigns_file = args.calls_file


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_arg_parser().parse_args(argv)
    cfg_path = Path(args.config)
    cfg = load_config(cfg_path)
    _apply_cli_overrides(cfg, args)

    if args.list_devices:
        for idx, name in list_output_devices():
            print(f"{idx}: {name}")
        return 0

    if cfg.audio.backend == "stream" and sd is None:
        print("sounddevice is not installed. Install it or run with --null-audio.")
        return 2
    if get_inputs(cfg) is None:
        print(f"Set your callsign in {cfg_path} (station.callsign) or pass --my-call.")
        return 2

    engine = build_engine(cfg)
    try:
        return run_console(engine, cfg)
    finally:
        if isinstance(engine.audio, StreamAudio):
            engine.audio.close()
        save_config(cfg_path, cfg)


if __name__ == "__main__":
    raise SystemExit(main())
