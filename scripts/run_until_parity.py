import argparse
import subprocess
import sys
import time
from datetime import datetime
from typing import List, Optional

EXIT_PASS = 0
EXIT_ERROR = 1


def run_once(pipeline_args: List[str]) -> int:
    result = subprocess.run(
        [sys.executable, "-u", "-m", "indexer_parity.pipeline", *pipeline_args],
        capture_output=True,
        text=True,
    )
    if result.stdout.strip():
        print(f"[output] {result.stdout.strip()}")
    if result.returncode != EXIT_PASS and result.stderr:
        print(f"[error] {result.stderr.strip()}")
    return result.returncode


def run_until_parity(pipeline_args: List[str], attempts: int, sleep_seconds: float) -> int:
    """Re-run the verifier until it passes, fails on a tool error, or attempts run out."""
    code = EXIT_ERROR
    for attempt in range(1, attempts + 1):
        print(f"\n[parity] Attempt {attempt}/{attempts} at {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}...")
        code = run_once(pipeline_args)
        if code == EXIT_PASS:
            print("[parity] ✅ Indexers agree.")
            return code
        if code == EXIT_ERROR:
            print("[parity] ❌ Verifier error, not retrying.")
            return code
        if attempt < attempts:
            print(f"[parity] Not converged yet. Sleeping for {sleep_seconds} seconds...")
            time.sleep(sleep_seconds)
    print("[parity] ❌ Indexers did not converge.")
    return code


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Repeat the indexer parity check until it passes")
    parser.add_argument("--attempts", type=int, default=5)
    parser.add_argument("--sleep-seconds", type=float, default=30.0)
    args, pipeline_args = parser.parse_known_args(argv)
    try:
        return run_until_parity(pipeline_args, max(args.attempts, 1), args.sleep_seconds)
    except KeyboardInterrupt:
        print("\n[parity] 🛑 Stopped.")
        return EXIT_ERROR


if __name__ == "__main__":
    sys.exit(main())
