"""
Seed an application by walking step payloads through the client draft, one step at a time.
Run: python -m scripts.seed_application steps.json [--application-id app-...]

steps.json maps step numbers to payloads, e.g. {"1": {"first_name": "Ana", ...}, "2": {...}}.
Stops at the first step that is not saved; CRM sync is not attempted.
"""
import argparse
import asyncio
import json
import os
import sys
from typing import Any, Optional

# Add parent so we can import from the project root
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from database import AsyncSessionLocal, init_db
from services.application_state import ApplicationStateStore
from services.form_state import FormSession


async def fill(session_factory, steps: dict[str, Any], application_id: Optional[str] = None) -> FormSession:
    """Submit each step in order; the returned draft carries last_error if one was not saved."""
    async with session_factory() as session:
        form = FormSession(ApplicationStateStore(session))
        if application_id:
            await form.load(application_id)
        else:
            await form.start()
        for step_number in sorted(int(n) for n in steps):
            form.update_step(step_number, steps[str(step_number)])
            result = await form.submit_step(step_number)
            if result is None or not result.saved:
                break
        return form


async def seed(path: str, application_id: Optional[str]) -> int:
    await init_db()
    with open(path, encoding="utf-8") as f:
        steps = json.load(f)
    form = await fill(AsyncSessionLocal, steps, application_id)
    if form.last_error:
        print(f"Application {form.application_id} stopped at step {form.current_step}: {form.last_error}")
        return 1
    print(f"Application {form.application_id} at step {form.current_step} ({form.progress_percentage}%)")
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__, formatter_class=argparse.RawDescriptionHelpFormatter)
    parser.add_argument("steps_file")
    parser.add_argument("--application-id")
    args = parser.parse_args()
    sys.exit(asyncio.run(seed(args.steps_file, args.application_id)))


if __name__ == "__main__":
    main()
