#!/usr/bin/env python
"""Example CI step: back up the changes between two commits.

Builds a change set from ``git diff --name-status``, posts it to ``/backup``,
then uploads every path the server reports as ``pending_download``.

    BACKUP_URL=https://backup.example.com BACKUP_TOKEN=... \\
        python examples/ci_backup_client.py owner/repo refs/heads/main <before> <after>
"""

import asyncio
import os
import subprocess
import sys

import httpx


def build_change_set(before: str, after: str) -> dict:
    changed = subprocess.run(
        ["git", "diff", "--name-status", before, after],
        check=True, capture_output=True, text=True,
    ).stdout.splitlines()

    payload = {"create": {}, "modify": {}, "remove": [], "download": []}
    for change in changed:
        parts = change.strip().split("\t")
        action = parts[0]
        if action in ("A", "M"):
            filepath = parts[1]
            try:
                with open(filepath, encoding="utf-8") as f:
                    payload["create"][filepath] = f.read()
            except UnicodeDecodeError:
                payload["download"].append(filepath)
        elif action.startswith("R"):
            payload["modify"][parts[1]] = parts[2]
        else:
            payload["remove"].append(parts[1])
    return payload


async def main(repository: str, ref: str, before: str, after: str):
    base_url = os.environ["BACKUP_URL"].rstrip("/")
    headers = {"authorization": f"Bearer {os.environ['BACKUP_TOKEN']}"}
    target = f"{repository};{ref}"

    async with httpx.AsyncClient(timeout=60) as client:
        response = await client.post(
            f"{base_url}/backup",
            headers={**headers, "content-location": target},
            json=build_change_set(before, after),
        )
        response.raise_for_status()
        report = response.json()
        print(f"Backup report: {report}")

        for path in report["pending_download"]:
            with open(path, "rb") as f:
                upload = await client.post(
                    f"{base_url}/upload",
                    headers={**headers, "content-location": f"{target};{path}"},
                    files={"file": (os.path.basename(path), f)},
                )
            upload.raise_for_status()
            print(f"Uploaded {path}")


if __name__ == "__main__":
    asyncio.run(main(*sys.argv[1:5]))
