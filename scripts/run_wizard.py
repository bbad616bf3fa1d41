#!/usr/bin/env python3
"""
Drive a full wizard run (package, templates, investigation, generation) against a backend.
Usage: python scripts/run_wizard.py "Acme Corp" --package starter --out site.zip
"""
import argparse
import asyncio
import sys
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from wizardflow.core.config import settings
from wizardflow.core.engine import WizardEngine
from wizardflow.core.errors import WizardError
from wizardflow.core.logging import configure_logging
from wizardflow.core.workflow import WizardStage
from wizardflow.db.migrate import run_migrations


async def wait_for_stage(engine: WizardEngine, stage: WizardStage, timeout: float) -> bool:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while engine.stage != stage:
        if loop.time() > deadline:
            return False
        # skip the confirmation countdown between categories
        engine.confirm_advance()
        await asyncio.sleep(0.1)
    return True


async def run(args) -> int:
    engine = WizardEngine()
    state = engine.start()
    print(f"Session {engine.session_id} at stage: {state.stage}")

    try:
        if state.stage == WizardStage.FINAL:
            print("A finished site is already saved; nothing to do.")
            return 0

        if not state.selected_package:
            engine.select_package(args.package)
        engine.select_templates(
            design={"id": args.design} if args.design else None,
            content={"id": args.content} if args.content else None,
        )
        if args.business_type or args.location:
            engine.update_requirements(businessType=args.business_type, location=args.location)

        print(f"Investigating {args.topic!r}...")
        results = await engine.run_investigation(
            args.topic, business_type=args.business_type, location=args.location,
        )
        for job in engine.investigation.jobs:
            print(f"  {job.index + 1:>2}. {job.name:<32} {job.status.value:<12} {job.progress:>5.0f}%")
        if results is None:
            failed = ", ".join(j.name for j in engine.investigation.failed_jobs)
            print(f"Investigation incomplete (failed: {failed or 'none'}); rerun to resume")
            return 1

        if not await wait_for_stage(engine, WizardStage.BUILD, timeout=settings.build_grace_delay_s + 30):
            print(f"Stopped at stage {engine.stage}")
            return 1

        print("Generating site...")
        artifact = await engine.run_generation()
        if artifact is None:
            print("Generation aborted")
            return 1
        print(f"Generated {len(artifact.files)} files (primary: {artifact.primary_path})")

        if args.out:
            data = await engine.download_package()
            Path(args.out).write_bytes(data)
            print(f"Package written to {args.out}")

        engine.finalize()
        print("Done.")
        return 0
    except WizardError as e:
        print(f"Error: {e.user_message}")
        print(f"  ({e})")
        return 1
    finally:
        await engine.shutdown()


def main():
    parser = argparse.ArgumentParser(description="Run the website wizard end to end")
    parser.add_argument("topic", help="Business or site topic, e.g. 'Acme Corp'")
    parser.add_argument("--package", default="starter")
    parser.add_argument("--design", default=None, help="Design template id")
    parser.add_argument("--content", default=None, help="Content template id")
    parser.add_argument("--business-type", default=None)
    parser.add_argument("--location", default=None)
    parser.add_argument("--out", default=None, help="Write the downloaded package here")
    args = parser.parse_args()

    configure_logging()
    run_migrations()
    sys.exit(asyncio.run(run(args)))


if __name__ == "__main__":
    main()
