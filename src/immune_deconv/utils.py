# src/immune_deconv/utils.py
from __future__ import annotations
import json
from pathlib import Path
from datetime import datetime
from typing import Any

def timestamped_run_root(root_name: str = "immune_deconv_runs") -> str:
    """~/immune_deconv_runs/2025-10-27_153012"""
    stamp = datetime.now().strftime("%Y-%m-%d_%H%M%S")
    root = Path.home() / root_name / stamp
    root.mkdir(parents=True, exist_ok=True)
    return str(root)

def write_json(obj: Any, path: str) -> str:
    with open(path, "w", encoding="utf-8") as f:
        json.dump(obj, f, indent=2, ensure_ascii=False, default=str)
    return str(path)

__all__ = ["timestamped_run_root", "write_json"]
