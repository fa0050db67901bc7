"""Checkpoints and rollback for pipeline side effects.

Each pipeline run keeps an append-only log of the file operations its steps
performed. When a step ultimately fails, the log is replayed in reverse to
restore the workspace, either completely or back to a checkpoint taken
before the step ran.

State layout under ``state_dir``::

    <pipeline_id>/
        rollback.json              # RollbackLog
        checkpoints/<step_id>.json # Checkpoint
        backups/<n>-<name>.backup  # file contents before modification
"""

from __future__ import annotations

import logging
import os
import shutil
import threading
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from ..contract.errors import RollbackError
from ..utils.capabilities import get_capabilities

logger = logging.getLogger(__name__)

LOG_FILE = "rollback.json"
CHECKPOINTS_DIR = "checkpoints"
BACKUPS_DIR = "backups"


class OperationType(str, Enum):
    """Kinds of side effects a step can record."""

    CREATED = "created"  # File created, revert deletes it
    MODIFIED = "modified"  # File changed, revert restores the backup
    DELETED = "deleted"  # File removed, revert restores the backup
    EXTERNAL_COMMIT = "external_commit"  # Pushed/committed elsewhere, manual revert


def _now() -> str:
    return datetime.now().isoformat()


class Checkpoint(BaseModel):
    """Snapshot of artifact state taken before a risky step."""

    model_config = ConfigDict(frozen=True)

    pipeline_id: str
    step_id: str
    timestamp: str = Field(default_factory=_now)
    workspace_path: str = ""
    artifacts: dict[str, str] = Field(default_factory=dict)  # name -> path
    metadata: dict[str, Any] = Field(default_factory=dict)
    can_rollback: bool = True
    # Operations logged before this checkpoint; later ones are reverted by
    # rolling back to it.
    sequence: int = 0


class RollbackOperation(BaseModel):
    """One recorded side effect."""

    model_config = ConfigDict(frozen=True)

    type: OperationType
    target: str
    backup: str | None = None
    can_revert: bool = True
    revert_instructions: list[str] = Field(default_factory=list)
    timestamp: str = ""
    sequence: int = 0
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def requires_manual(self) -> bool:
        return not self.can_revert or self.type == OperationType.EXTERNAL_COMMIT


class RollbackLog(BaseModel):
    """Per-pipeline operation log."""

    pipeline_id: str
    start_time: str = Field(default_factory=_now)
    operations: list[RollbackOperation] = Field(default_factory=list)
    checkpoints: list[Checkpoint] = Field(default_factory=list)
    # Sequences of operations already reverted. Append-only.
    reverted: list[int] = Field(default_factory=list)


@dataclass
class RollbackPlan:
    """Read-only preview of a rollback."""

    pipeline_id: str
    start_time: str
    operations: list[RollbackOperation]
    checkpoints: list[Checkpoint]
    to_checkpoint: Checkpoint | None = None

    def format(self) -> str:
        """Render the plan as text."""
        lines = [f"Rollback Plan for Pipeline: {self.pipeline_id}", f"Started: {self.start_time}"]
        if self.to_checkpoint is not None:
            lines.append(f"Rolling back to checkpoint: {self.to_checkpoint.step_id}")
        lines.append("")

        if not self.operations:
            lines.append("Nothing to revert.")
        else:
            lines.append("Operations to Revert (in reverse order):")
            lines.append("")
            for i, op in enumerate(self.operations, 1):
                lines.append(f"{i}. [{op.type.value}] {op.target}")
                if op.requires_manual:
                    lines.append("   ⚠️  Requires manual intervention")
                    if op.revert_instructions:
                        lines.append("   Steps:")
                        lines.extend(f"   - {step}" for step in op.revert_instructions)
                else:
                    lines.append("   ✓ Can be automatically reverted")
                lines.append("")

        if self.checkpoints:
            lines.append("Available Checkpoints:")
            for i, cp in enumerate(self.checkpoints, 1):
                lines.append(f"{i}. Step: {cp.step_id} (at {cp.timestamp})")

        return "\n".join(lines).rstrip() + "\n"


@dataclass
class RollbackReport:
    """Outcome of a rollback.

    Attributes:
        reverted: Operations reverted by this call, in the order reverted.
        manual: Operations that need a human, with their instructions.
        errors: One line per operation that failed to revert.
        skipped: Operations in range that an earlier rollback already reverted.
    """

    pipeline_id: str
    to_checkpoint: Checkpoint | None = None
    reverted: list[RollbackOperation] = field(default_factory=list)
    manual: list[RollbackOperation] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    skipped: int = 0

    @property
    def success(self) -> bool:
        return not self.errors

    @property
    def manual_instructions(self) -> list[str]:
        return [step for op in self.manual for step in op.revert_instructions]

    def format(self) -> str:
        """Render the report as text."""
        status = "completed" if self.success else "completed with errors"
        lines = [f"Rollback {status} for pipeline {self.pipeline_id}"]
        lines.append(f"Reverted: {len(self.reverted)}")
        if self.skipped:
            lines.append(f"Already reverted: {self.skipped}")
        for op in self.reverted:
            lines.append(f"  ✓ [{op.type.value}] {op.target}")
        if self.manual:
            lines.append("Manual intervention required:")
            for op in self.manual:
                lines.append(f"  ⚠ [{op.type.value}] {op.target}")
                lines.extend(f"     - {step}" for step in op.revert_instructions)
        if self.errors:
            lines.append("Errors:")
            lines.extend(f"  ✗ {error}" for error in self.errors)
        return "\n".join(lines)


def _write_json(path: Path, model: BaseModel) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(path.name + ".tmp")
    tmp.write_text(model.model_dump_json(indent=2))
    os.replace(tmp, path)


class RollbackManager:
    """Records pipeline side effects and reverts them.

    Calls for the same pipeline are serialized with a per-pipeline lock;
    different pipelines use different files and never contend.
    """

    def __init__(self, state_dir: Path | str):
        self.state_dir = Path(state_dir)
        self._locks: dict[str, threading.RLock] = {}
        self._locks_guard = threading.Lock()

    # =========================================================================
    # Paths and locking
    # =========================================================================

    def _lock(self, pipeline_id: str) -> threading.RLock:
        with self._locks_guard:
            lock = self._locks.get(pipeline_id)
            if lock is None:
                lock = threading.RLock()
                self._locks[pipeline_id] = lock
            return lock

    def pipeline_dir(self, pipeline_id: str) -> Path:
        return self.state_dir / pipeline_id

    def _log_path(self, pipeline_id: str) -> Path:
        return self.pipeline_dir(pipeline_id) / LOG_FILE

    def _checkpoint_path(self, pipeline_id: str, step_id: str) -> Path:
        return self.pipeline_dir(pipeline_id) / CHECKPOINTS_DIR / f"{step_id}.json"

    # =========================================================================
    # Log
    # =========================================================================

    def init_log(self, pipeline_id: str) -> RollbackLog:
        """Start a fresh log for a pipeline, replacing any existing one."""
        with self._lock(pipeline_id):
            log = RollbackLog(pipeline_id=pipeline_id)
            self._save_log(log)
            return log

    def load_log(self, pipeline_id: str) -> RollbackLog:
        """Load a pipeline's log.

        Raises:
            RollbackError: If the log is missing or unreadable.
        """
        path = self._log_path(pipeline_id)
        try:
            return RollbackLog.model_validate_json(path.read_bytes())
        except FileNotFoundError as e:
            raise RollbackError(f"no rollback log for pipeline {pipeline_id}") from e
        except (OSError, PydanticValidationError) as e:
            raise RollbackError(f"failed to load rollback log {path}: {e}") from e

    def _load_or_init(self, pipeline_id: str) -> RollbackLog:
        if not self._log_path(pipeline_id).exists():
            return self.init_log(pipeline_id)
        return self.load_log(pipeline_id)

    def _save_log(self, log: RollbackLog) -> None:
        _write_json(self._log_path(log.pipeline_id), log)

    def log_operation(self, pipeline_id: str, op: RollbackOperation) -> RollbackOperation:
        """Append an operation to the pipeline's log.

        The log is created on first use and written after every append.
        Timestamp and sequence are assigned here.

        Args:
            pipeline_id: Pipeline run the operation belongs to.
            op: The operation.

        Returns:
            The operation as stored.
        """
        with self._lock(pipeline_id):
            log = self._load_or_init(pipeline_id)

            update: dict[str, Any] = {"timestamp": _now(), "sequence": len(log.operations) + 1}
            if op.type == OperationType.EXTERNAL_COMMIT:
                update["can_revert"] = False
            stored = op.model_copy(update=update)
            if stored.requires_manual and not stored.revert_instructions:
                stored = stored.model_copy(update={"revert_instructions": self._default_instructions(stored)})

            log.operations.append(stored)
            self._save_log(log)

        if stored.requires_manual:
            logger.warning(
                "Operation on %s recorded for pipeline %s requires manual rollback",
                stored.target,
                pipeline_id,
            )
        else:
            logger.debug("Logged %s %s for pipeline %s", stored.type.value, stored.target, pipeline_id)
        return stored

    def _default_instructions(self, op: RollbackOperation) -> list[str]:
        if op.type != OperationType.EXTERNAL_COMMIT:
            return [f"Revert the change to {op.target} manually"]

        commit = op.metadata.get("commit")
        if not get_capabilities().is_available("git"):
            return [
                f"Revert commit {commit or '(unknown)'} in {op.target} with your version control tool",
            ]
        if commit:
            return [
                f"cd {op.target}",
                f"git revert --no-edit {commit}",
                "Push the revert if the commit was already pushed",
            ]
        return [
            f"cd {op.target}",
            "git log --oneline to find the commit made by the pipeline",
            "git revert --no-edit <commit>",
        ]

    # =========================================================================
    # Checkpoints
    # =========================================================================

    def create_checkpoint(
        self,
        pipeline_id: str,
        step_id: str,
        workspace: Path | str,
        artifacts: dict[str, str] | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> Checkpoint:
        """Snapshot artifact state before a step runs.

        The checkpoint file is written immediately and the checkpoint is
        appended to the pipeline's log.

        Args:
            pipeline_id: Pipeline run.
            step_id: Step about to run.
            workspace: Workspace path of the step.
            artifacts: Artifact name to path map.
            metadata: Extra data stored with the checkpoint.

        Returns:
            The written Checkpoint.
        """
        with self._lock(pipeline_id):
            log = self._load_or_init(pipeline_id)
            checkpoint = Checkpoint(
                pipeline_id=pipeline_id,
                step_id=step_id,
                workspace_path=str(workspace),
                artifacts=dict(artifacts or {}),
                metadata=dict(metadata or {}),
                sequence=len(log.operations),
            )
            _write_json(self._checkpoint_path(pipeline_id, step_id), checkpoint)
            log.checkpoints.append(checkpoint)
            self._save_log(log)

        logger.info("Checkpoint %s/%s created", pipeline_id, step_id)
        return checkpoint

    def load_checkpoint(self, pipeline_id: str, step_id: str) -> Checkpoint:
        """Load a checkpoint written by ``create_checkpoint``.

        Raises:
            RollbackError: If the checkpoint is missing or unreadable.
        """
        path = self._checkpoint_path(pipeline_id, step_id)
        try:
            return Checkpoint.model_validate_json(path.read_bytes())
        except FileNotFoundError as e:
            raise RollbackError(f"no checkpoint {step_id} for pipeline {pipeline_id}") from e
        except (OSError, PydanticValidationError) as e:
            raise RollbackError(f"failed to load checkpoint {path}: {e}") from e

    def list_checkpoints(self, pipeline_id: str) -> list[Checkpoint]:
        """Checkpoints of a pipeline, oldest first. Unreadable files are skipped."""
        directory = self.pipeline_dir(pipeline_id) / CHECKPOINTS_DIR
        if not directory.exists():
            return []

        checkpoints = []
        for path in directory.glob("*.json"):
            try:
                checkpoints.append(Checkpoint.model_validate_json(path.read_bytes()))
            except (OSError, PydanticValidationError) as e:
                logger.warning("Skipping unreadable checkpoint %s: %s", path, e)

        checkpoints.sort(key=lambda c: (c.sequence, c.timestamp))
        return checkpoints

    # =========================================================================
    # Backups
    # =========================================================================

    def create_backup(self, pipeline_id: str, path: Path | str) -> str:
        """Copy a file into the pipeline's backup directory.

        Returns:
            Path of the backup.
        """
        source = Path(path)
        with self._lock(pipeline_id):
            backup_dir = self.pipeline_dir(pipeline_id) / BACKUPS_DIR
            backup_dir.mkdir(parents=True, exist_ok=True)
            number = len(list(backup_dir.glob("*.backup"))) + 1
            backup = backup_dir / f"{number}-{source.name}.backup"
            backup.write_bytes(source.read_bytes())
        return str(backup)

    def record_created(
        self, pipeline_id: str, path: Path | str, metadata: dict[str, Any] | None = None
    ) -> RollbackOperation:
        """Record a file the step created."""
        op = RollbackOperation(type=OperationType.CREATED, target=str(path), metadata=metadata or {})
        return self.log_operation(pipeline_id, op)

    def record_modified(
        self, pipeline_id: str, path: Path | str, metadata: dict[str, Any] | None = None
    ) -> RollbackOperation:
        """Back up and record a file the step is about to modify."""
        with self._lock(pipeline_id):
            backup = self.create_backup(pipeline_id, path)
            op = RollbackOperation(
                type=OperationType.MODIFIED, target=str(path), backup=backup, metadata=metadata or {}
            )
            return self.log_operation(pipeline_id, op)

    def record_deleted(
        self, pipeline_id: str, path: Path | str, metadata: dict[str, Any] | None = None
    ) -> RollbackOperation:
        """Back up and record a file the step is about to delete."""
        with self._lock(pipeline_id):
            backup = self.create_backup(pipeline_id, path)
            op = RollbackOperation(
                type=OperationType.DELETED, target=str(path), backup=backup, metadata=metadata or {}
            )
            return self.log_operation(pipeline_id, op)

    def record_external_commit(
        self,
        pipeline_id: str,
        target: Path | str,
        commit: str | None = None,
        instructions: list[str] | None = None,
    ) -> RollbackOperation:
        """Record a commit made outside the workspace files. Never auto-reverted."""
        op = RollbackOperation(
            type=OperationType.EXTERNAL_COMMIT,
            target=str(target),
            can_revert=False,
            revert_instructions=instructions or [],
            metadata={"commit": commit} if commit else {},
        )
        return self.log_operation(pipeline_id, op)

    # =========================================================================
    # Rollback
    # =========================================================================

    def _resolve_checkpoint(self, log: RollbackLog, to_checkpoint: Checkpoint | str | None) -> Checkpoint | None:
        if to_checkpoint is None or isinstance(to_checkpoint, Checkpoint):
            return to_checkpoint
        for checkpoint in reversed(log.checkpoints):
            if checkpoint.step_id == to_checkpoint:
                return checkpoint
        return self.load_checkpoint(log.pipeline_id, to_checkpoint)

    @staticmethod
    def _select(log: RollbackLog, checkpoint: Checkpoint | None) -> tuple[list[RollbackOperation], int]:
        """Operations to revert, newest first, plus the count already reverted."""
        reverted = set(log.reverted)
        selected = []
        skipped = 0
        for op in reversed(log.operations):
            if checkpoint is not None and op.sequence <= checkpoint.sequence:
                break
            if op.sequence in reverted:
                skipped += 1
                continue
            selected.append(op)
        return selected, skipped

    def get_rollback_plan(
        self, pipeline_id: str, to_checkpoint: Checkpoint | str | None = None
    ) -> RollbackPlan:
        """Preview what ``rollback`` would do, without touching anything.

        Raises:
            RollbackError: If the log or the named checkpoint is missing.
        """
        with self._lock(pipeline_id):
            log = self.load_log(pipeline_id)
            checkpoint = self._resolve_checkpoint(log, to_checkpoint)
            operations, _ = self._select(log, checkpoint)
        return RollbackPlan(
            pipeline_id=pipeline_id,
            start_time=log.start_time,
            operations=operations,
            checkpoints=list(log.checkpoints),
            to_checkpoint=checkpoint,
        )

    def rollback(self, pipeline_id: str, to_checkpoint: Checkpoint | str | None = None) -> RollbackReport:
        """Revert a pipeline's operations, newest first.

        Stops at the first operation that predates ``to_checkpoint`` (or
        replays everything when it is None). Operations reverted by an
        earlier call are skipped, so repeating a rollback is a no-op.
        Failures are collected, not raised, so as much state as possible
        is restored.

        Args:
            pipeline_id: Pipeline run to roll back.
            to_checkpoint: Checkpoint, or its step ID.

        Returns:
            RollbackReport.

        Raises:
            RollbackError: If the log or the named checkpoint is missing.
        """
        with self._lock(pipeline_id):
            log = self.load_log(pipeline_id)
            checkpoint = self._resolve_checkpoint(log, to_checkpoint)
            operations, skipped = self._select(log, checkpoint)

            report = RollbackReport(pipeline_id=pipeline_id, to_checkpoint=checkpoint, skipped=skipped)
            for op in operations:
                if op.requires_manual:
                    report.manual.append(op)
                    continue
                try:
                    self._revert(op)
                except (OSError, RollbackError) as e:
                    report.errors.append(f"failed to revert {op.type.value} {op.target}: {e}")
                    continue
                report.reverted.append(op)
                log.reverted.append(op.sequence)

            if report.reverted:
                self._save_log(log)

        if report.errors:
            logger.warning("Rollback of %s completed with %d errors", pipeline_id, len(report.errors))
        if report.manual:
            logger.warning("Rollback of %s needs %d manual steps", pipeline_id, len(report.manual))
        logger.info("Rolled back %d operations for pipeline %s", len(report.reverted), pipeline_id)
        return report

    def _revert(self, op: RollbackOperation) -> None:
        target = Path(op.target)
        if op.type == OperationType.CREATED:
            target.unlink(missing_ok=True)
        elif op.type in (OperationType.MODIFIED, OperationType.DELETED):
            if not op.backup:
                raise RollbackError("no backup recorded")
            data = Path(op.backup).read_bytes()
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)
        else:
            raise RollbackError(f"unknown operation type: {op.type}")

    def cleanup(self, pipeline_id: str) -> None:
        """Remove all state kept for a pipeline."""
        with self._lock(pipeline_id):
            directory = self.pipeline_dir(pipeline_id)
            if directory.exists():
                shutil.rmtree(directory)
        logger.info("Removed rollback state for pipeline %s", pipeline_id)
