"""
Graph controller.

Walks a plan graph one step at a time in topological order. Skill steps go
through the model invocation service when credentials are configured and fall
back to direct execution on provider failures. Subagent steps may complete,
pause the run for approval, or fail in isolation. Every state change is
appended to the run's workspace event log and streamed as a progress event.
"""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

import structlog

from ..config import Settings, get_settings, resolve_run_settings
from ..errors import (
    EngineError,
    RunCancelled,
    RunNotResumable,
    StepExecutionError,
    SubagentExecutionError,
    SubagentLoadError,
    SubagentNotRegisteredError,
    is_provider_failure,
)
from ..invocation import ModelInvocationService, ToolDefinition
from ..models import (
    Artifact,
    BlockedSubagent,
    FailureStage,
    NodeKind,
    PlanGraph,
    PlanNode,
    ProgressEvent,
    ProgressEventType,
    RunContext,
    RunRequest,
    RunStatus,
    RunSummary,
    SkillContext,
    SkillRequest,
    SkillResult,
    SkillRunner,
    SubagentFailure,
    SubagentLifecycle,
    SubagentOutput,
    SubagentRequest,
    SubagentRunRecord,
    VerificationResult,
    VerificationStatus,
    Verifier,
    WorkspaceEvent,
    WorkspaceEventType,
    generate_ulid,
    topological_order,
    utc_now,
    validate_plan,
)
from ..planner import (
    IntentResolver,
    KeywordIntentClassifier,
    ModelIntentClassifier,
    Planner,
    extract_existing_artifacts,
)
from ..skills import PrdSkillRunner
from ..subagents import SubagentRegistry, default_registry
from ..verification import PrdVerifier, aggregate_verification
from ..workspace import WorkspaceStore, create_workspace_store
from .run_store import RunStateStore, create_run_state_store
from .state import ExecutionContext, ExecutionSnapshot, ProgressCallback

logger = structlog.get_logger()

AWAITING_INPUT = RunStatus.AWAITING_INPUT.value
APPROVAL_STATUSES = ("awaiting-plan-confirmation", "awaiting-clarification")
PROMPT_KIND = "prompt"
MAX_SKILL_OUTPUT_TOKENS = 2048

SYSTEM_PROMPT = (
    "You are the plan-graph orchestrator. Use the provided tools to execute each "
    "plan step and return concise results. Target artifact: {artifact_kind}. "
    "Always call the required tool and rely on the tool output instead of "
    "inventing content."
)


class GraphController:
    """
    Executes plan graphs and owns the run state machine.

    Args:
        planner: Builds the plan when start() is not given one
        skill_runner: Executes skill steps
        workspace: Per-run event log and artifact store
        registry: Subagent manifests and lifecycles
        verifiers: Checks run against the primary artifact before completion
        run_store: Resumable-run table; built from settings.run_state_url when omitted
        settings: Engine settings
        invocation_factory: Builds a model invocation service for an API key
        clock: Source of timestamps
    """

    def __init__(
        self,
        planner: Planner,
        skill_runner: SkillRunner,
        workspace: WorkspaceStore,
        registry: Optional[SubagentRegistry] = None,
        verifiers: Optional[List[Verifier]] = None,
        run_store: Optional[RunStateStore] = None,
        settings: Optional[Settings] = None,
        invocation_factory: Optional[Callable[[str], ModelInvocationService]] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.planner = planner
        self.skill_runner = skill_runner
        self.workspace = workspace
        self.registry = registry
        self.verifiers = list(verifiers or [])
        self.settings = settings or get_settings()
        self.run_store = run_store or create_run_state_store(self.settings.run_state_url)
        self.invocation_factory = invocation_factory or (
            lambda api_key: ModelInvocationService.from_settings(self.settings, api_key=api_key)
        )
        self.clock = clock or utc_now
        self._active: Dict[str, RunStatus] = {}

    # ------------------------------------------------------------------
    # Public surface
    # ------------------------------------------------------------------

    async def start(
        self,
        request: RunRequest,
        run_id: Optional[str] = None,
        initial_plan: Optional[PlanGraph] = None,
        progress: Optional[ProgressCallback] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> RunSummary:
        """Plan and execute a run.

        Always returns a summary; failures are reported through its status.

        Raises:
            ConfigurationError: If the request carries invalid overrides
        """
        run_id = run_id or generate_ulid()
        log = logger.bind(run_id=run_id)
        run_settings = resolve_run_settings(
            self.settings, request.attributes.get("overrides")
        )
        handle = self.workspace.ensure_workspace(
            run_id,
            request.artifact_kind,
            persist_artifacts=self.settings.workspace_persist_artifacts,
            temp_subdir=self.settings.workspace_temp_subdir,
        )
        run = RunContext(
            run_id=run_id,
            request=request,
            settings=run_settings,
            workspace=handle,
            started_at=self.clock(),
            cancel_event=cancel_event,
        )
        self._active[run_id] = RunStatus.RUNNING

        self._emit(progress, ProgressEventType.RUN_STATUS, run_id, status=RunStatus.RUNNING)
        self._record(
            run_id,
            WorkspaceEventType.SYSTEM,
            {"message": "Run started", "settings": run_settings.model_dump(mode="json")},
        )
        log.info("run_started", artifact_kind=request.artifact_kind)

        existing = extract_existing_artifacts(request)
        run.state.existing_artifacts = list(existing)
        if initial_plan is not None and request.intent is not None:
            run.state.cached_intent = request.intent

        context: Optional[ExecutionContext] = None
        try:
            plan = initial_plan or await self.planner.create_plan(run)
            validate_plan(plan)
            order = topological_order(plan)
            run.state.plan = plan

            context = ExecutionContext(
                run=run,
                plan=plan,
                order=order,
                progress=progress,
                cancel_event=cancel_event,
            )
            for kind, artifacts in existing.items():
                context.artifacts_by_kind[kind] = list(artifacts)

            self._notify(
                context,
                ProgressEventType.PLAN_CREATED,
                payload={
                    "plan_id": plan.id,
                    "entry_id": plan.entry_id,
                    "artifact_kind": plan.artifact_kind,
                    "order": order,
                    "transition_path": plan.metadata.get("transition_path", []),
                },
            )
            self._record(
                run_id,
                WorkspaceEventType.PLAN,
                {"action": "created", "plan": plan.model_dump(mode="json")},
            )
            self.run_store.save_snapshot(ExecutionSnapshot.capture(context))
            log.info("plan_created", plan_id=plan.id, nodes=len(plan.nodes))

            await self._execute(context, order)
            await self._finalize(context)
        except Exception as e:
            return self._fail(run, context, e, progress)

        return self._complete(context)

    async def resume(self, run_id: str) -> RunSummary:
        """Return the last known summary of a run.

        Raises:
            RunNotResumable: If no state exists for the run
        """
        summary = self.run_store.load_summary(run_id)
        if summary is None:
            raise RunNotResumable(
                f"No state found for run {run_id}", details={"run_id": run_id}
            )
        return summary

    async def resume_subagent(
        self,
        run_id: str,
        step_id: str,
        approved_plan: Any,
        progress: Optional[ProgressCallback] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> RunSummary:
        """Continue a run paused on a subagent approval.

        Re-executes the blocked step with the approved plan attached, then
        walks the remaining steps after it.

        Raises:
            RunNotResumable: If the run has no snapshot or is not blocked on step_id
        """
        snapshot = self.run_store.load_snapshot(run_id)
        if snapshot is None:
            raise RunNotResumable(
                f"No resumable state found for run {run_id}", details={"run_id": run_id}
            )

        blocked = snapshot.state.blocked_subagent
        if blocked is None:
            raise RunNotResumable(
                f"Run {run_id} is not waiting on a subagent approval",
                details={"run_id": run_id, "step_id": step_id},
            )
        if blocked.step_id != step_id:
            raise RunNotResumable(
                f"Run {run_id} is blocked on step {blocked.step_id}, not {step_id}",
                details={"run_id": run_id, "blocked_step_id": blocked.step_id, "step_id": step_id},
            )

        # The workspace store may belong to another process than the one that paused
        self.workspace.ensure_workspace(
            run_id,
            snapshot.workspace.artifact_kind,
            persist_artifacts=snapshot.workspace.persist_artifacts,
            temp_subdir=self.settings.workspace_temp_subdir,
        )
        context = snapshot.restore(progress=progress, cancel_event=cancel_event)
        log = logger.bind(run_id=run_id, step_id=step_id)
        try:
            context.transition(RunStatus.RUNNING)
            context.state.blocked_subagent = None
            self._active[run_id] = RunStatus.RUNNING

            self._notify(context, ProgressEventType.RUN_STATUS, status=RunStatus.RUNNING)
            self._notify(
                context,
                ProgressEventType.SUBAGENT_APPROVED,
                step_id=step_id,
                payload={"subagent_id": blocked.subagent_id, "approved_plan": approved_plan},
            )
            self._record(
                run_id,
                WorkspaceEventType.SUBAGENT,
                {
                    "action": "approved",
                    "step_id": step_id,
                    "subagent_id": blocked.subagent_id,
                    "approved_plan": approved_plan,
                },
            )
            log.info("subagent_approved", subagent_id=blocked.subagent_id)

            node = context.plan.nodes[step_id]
            await self._execute_subagent_step(
                context,
                node,
                extra_params={
                    "approved_plan": approved_plan,
                    "require_plan_confirmation": False,
                },
                resumed=True,
            )

            if context.status == RunStatus.RUNNING:
                position = context.order.index(step_id)
                await self._execute(context, context.order[position + 1:])
            await self._finalize(context)
        except Exception as e:
            return self._fail(context.run, context, e, progress)

        return self._complete(context)

    def get_status(self) -> Dict[str, Any]:
        """Report in-flight and awaiting runs."""
        return {
            "active_runs": sorted(
                run_id for run_id, status in self._active.items() if status == RunStatus.RUNNING
            ),
            "awaiting_runs": self.run_store.awaiting_runs(),
        }

    # ------------------------------------------------------------------
    # Execution loop
    # ------------------------------------------------------------------

    async def _execute(self, context: ExecutionContext, order: List[str]) -> None:
        for step_id in order:
            if context.status != RunStatus.RUNNING:
                break
            if step_id in context.skipped or step_id in context.artifacts_by_step:
                continue
            if context.cancel_event is not None and context.cancel_event.is_set():
                raise RunCancelled("Run cancelled", details={"step_id": step_id})

            node = context.plan.nodes[step_id]
            if node.kind == NodeKind.SKILL:
                await self._execute_skill_step(context, node)
            else:
                await self._execute_subagent_step(context, node)

    async def _finalize(self, context: ExecutionContext) -> None:
        """Post-loop checks, verification and auto subagents for a still-running run."""
        if context.status != RunStatus.RUNNING:
            return

        if context.artifact is None:
            intent = context.state.cached_intent
            if intent is not None and intent.needs_clarification:
                context.transition(RunStatus.AWAITING_INPUT)
                if context.state.clarification is None:
                    context.state.clarification = {"reason": intent.reason}
                return
            raise EngineError("Run completed without producing an artifact")

        if self.verifiers:
            verification = await self._verify(context)
            if verification.status == VerificationStatus.FAIL:
                context.error = "Verification failed"
                context.transition(RunStatus.FAILED)
                return
            if verification.status == VerificationStatus.NEEDS_REVIEW:
                context.transition(RunStatus.AWAITING_INPUT)
                return

        context.transition(RunStatus.COMPLETED)
        await self._run_auto_subagents(context)

    # ------------------------------------------------------------------
    # Skill steps
    # ------------------------------------------------------------------

    def _resolve_api_key(self, run: RunContext) -> Optional[str]:
        candidates = [run.request.attributes.get("api_key")]
        input_settings = run.request.input.get("settings")
        if isinstance(input_settings, dict):
            candidates.append(input_settings.get("api_key"))
        candidates.append(self.settings.openrouter_api_key)

        for candidate in candidates:
            if isinstance(candidate, str) and candidate.strip():
                return candidate
        return None

    def _step_prompt(self, context: ExecutionContext, node: PlanNode) -> str:
        intent = context.state.cached_intent
        requested = intent.requested_artifacts if intent else [context.plan.artifact_kind]
        return "\n".join(
            [
                f"Execute plan step: {node.label}",
                f"Step id: {node.id}",
                f"Depends on: {', '.join(node.depends_on) or 'none'}",
                f"Requested artifacts: {', '.join(requested)}",
                f"User message: {context.run.request.message}",
            ]
        )

    async def _invoke_skill(
        self, context: ExecutionContext, node: PlanNode, request: SkillRequest
    ) -> SkillResult:
        api_key = self._resolve_api_key(context.run)
        if api_key is None:
            return await self.skill_runner.invoke(request)

        log = logger.bind(run_id=context.run_id, step_id=node.id)
        tool = ToolDefinition(name=f"node_{node.id}", description=node.label)
        run_settings = context.run.settings
        invocation = self.invocation_factory(api_key)
        try:
            result = await invocation.invoke(
                model=self.settings.skills_model or run_settings.model,
                system=SYSTEM_PROMPT.format(artifact_kind=context.plan.artifact_kind),
                prompt=self._step_prompt(context, node),
                tool=tool,
                temperature=run_settings.temperature,
                max_output_tokens=min(run_settings.max_output_tokens, MAX_SKILL_OUTPUT_TOKENS),
                cancel_event=context.cancel_event,
            )
        except Exception as e:
            if not is_provider_failure(e):
                raise
            log.warning("provider_fallback", error=str(e))
            return await self.skill_runner.invoke(request)
        finally:
            await invocation.close()

        call = next((c for c in result.tool_calls if c.name == tool.name), None)
        if call is None:
            log.warning("tool_call_missing", model=result.model)
            return await self.skill_runner.invoke(request)

        if isinstance(request.input, dict):
            request.input = {**request.input, "tool_arguments": call.arguments}
        skill_result = await self.skill_runner.invoke(request)
        skill_result.metadata.setdefault("model", result.model)
        if result.usage:
            skill_result.usage = {**result.usage, **skill_result.usage}
        return skill_result

    async def _execute_skill_step(self, context: ExecutionContext, node: PlanNode) -> None:
        log = logger.bind(run_id=context.run_id, step_id=node.id)
        self._notify(context, ProgressEventType.STEP_STARTED, step_id=node.id, message=node.label)
        self._record(
            context.run_id,
            WorkspaceEventType.SKILL,
            {"action": "start", "step_id": node.id, "skill_id": node.skill_id, "label": node.label},
        )
        log.info("step_started", skill_id=node.skill_id)

        request = SkillRequest(
            skill_id=node.skill_id,
            plan_node=node,
            input={**context.run.request.input, **(node.inputs or {})},
            context=SkillContext(
                run=context.run,
                step=node,
                outputs=dict(context.skill_outputs),
                cancel_event=context.cancel_event,
            ),
        )

        try:
            result = await self._invoke_skill(context, node, request)
        except Exception as e:
            self._notify(
                context,
                ProgressEventType.STEP_FAILED,
                step_id=node.id,
                payload={"error": str(e)},
                message=str(e),
            )
            self._record(
                context.run_id,
                WorkspaceEventType.SKILL,
                {"action": "failed", "step_id": node.id, "skill_id": node.skill_id, "error": str(e)},
            )
            log.error("step_failed", error=str(e))
            if isinstance(e, EngineError):
                raise
            raise StepExecutionError(node.id, str(e)) from e

        self._handle_skill_result(context, node, result)

    def _handle_skill_result(
        self, context: ExecutionContext, node: PlanNode, result: SkillResult
    ) -> None:
        metadata = dict(result.metadata)
        artifact = metadata.pop("artifact", None)
        if isinstance(artifact, dict):
            artifact = Artifact.model_validate(artifact)

        context.skill_outputs[node.id] = result.output
        context.skill_results.append(
            {
                "step_id": node.id,
                "skill_id": node.skill_id,
                "output": result.output,
                "metadata": metadata,
                "confidence": result.confidence,
                "usage": result.usage,
                "artifact_id": artifact.id if artifact is not None else None,
            }
        )

        if artifact is not None:
            context.artifact = artifact
            context.track_artifact(node.id, artifact)
            self._deliver_artifact(context, artifact, node.id)

        self._notify(
            context,
            ProgressEventType.STEP_COMPLETED,
            step_id=node.id,
            payload={"confidence": result.confidence},
        )
        self._record(
            context.run_id,
            WorkspaceEventType.SKILL,
            {
                "action": "complete",
                "step_id": node.id,
                "skill_id": node.skill_id,
                "confidence": result.confidence,
            },
        )

        run_status = metadata.get("run_status") or metadata.get("status")
        if run_status == AWAITING_INPUT:
            context.transition(RunStatus.AWAITING_INPUT)
            context.state.clarification = metadata.get("clarification") or {"step_id": node.id}
            logger.info("run_awaiting_clarification", run_id=context.run_id, step_id=node.id)

    # ------------------------------------------------------------------
    # Subagent steps
    # ------------------------------------------------------------------

    async def _load_lifecycle(self, subagent_id: str) -> SubagentLifecycle:
        if self.registry is None:
            raise SubagentNotRegisteredError(subagent_id)
        return await self.registry.create_lifecycle(subagent_id)

    def _prompt_artifact(self, context: ExecutionContext) -> Optional[Artifact]:
        message = context.run.request.message
        extra = context.run.request.input.get("context")
        if not message and not extra:
            return None
        return Artifact(
            id=f"artifact-prompt-{context.run_id}",
            kind=PROMPT_KIND,
            version="1.0.0",
            label="Prompt Context",
            data={"message": message, "context": extra},
            metadata={"created_by": context.run.request.created_by, "tags": ["prompt"]},
        )

    def _resolve_source(
        self, context: ExecutionContext, node: PlanNode, lifecycle: SubagentLifecycle
    ) -> Optional[Artifact]:
        """Pick the artifact a subagent step consumes.

        Order: the contributing node's artifact, the latest artifact of the
        declared source kind, the run's primary artifact, then a prompt
        artifact synthesized from the request.
        """
        source = node.source
        if source.from_node and source.from_node in context.artifacts_by_step:
            return context.artifacts_by_step[source.from_node]

        latest = context.latest_artifact(source.artifact_kind)
        if latest is not None:
            return latest

        if context.artifact is not None:
            return context.artifact

        if PROMPT_KIND in lifecycle.metadata.source_kinds or source.artifact_kind == PROMPT_KIND:
            return self._prompt_artifact(context)
        return None

    def _progress_emitter(
        self, context: ExecutionContext, step_id: str, subagent_id: str
    ) -> Callable[[Dict[str, Any]], None]:
        def emit(payload: Dict[str, Any]) -> None:
            self._notify(
                context,
                ProgressEventType.SUBAGENT_PROGRESS,
                step_id=step_id,
                payload={"subagent_id": subagent_id, **payload},
            )

        return emit

    def _record_subagent_start(
        self,
        context: ExecutionContext,
        step_id: str,
        subagent_id: str,
        source: Optional[Artifact] = None,
        resumed: bool = False,
    ) -> None:
        # Written before the lifecycle loads so a load failure still follows a start
        self._record(
            context.run_id,
            WorkspaceEventType.SUBAGENT,
            {
                "action": "start",
                "step_id": step_id,
                "subagent_id": subagent_id,
                "source_artifact_id": source.id if source else None,
                "resumed": resumed,
            },
        )

    async def _invoke_subagent(
        self,
        context: ExecutionContext,
        step_id: str,
        lifecycle: SubagentLifecycle,
        source: Optional[Artifact],
        params: Dict[str, Any],
        resumed: bool = False,
    ) -> SubagentOutput:
        subagent_id = lifecycle.metadata.id
        self._notify(
            context,
            ProgressEventType.SUBAGENT_STARTED,
            step_id=step_id,
            payload={
                "subagent_id": subagent_id,
                "source_artifact_id": source.id if source else None,
                "resumed": resumed,
            },
        )
        logger.info(
            "subagent_started", run_id=context.run_id, step_id=step_id, subagent_id=subagent_id
        )
        return await lifecycle.execute(
            SubagentRequest(
                params=params,
                run=context.run,
                source_artifact=source,
                emit=self._progress_emitter(context, step_id, subagent_id),
                cancel_event=context.cancel_event,
            )
        )

    async def _execute_subagent_step(
        self,
        context: ExecutionContext,
        node: PlanNode,
        extra_params: Optional[Dict[str, Any]] = None,
        resumed: bool = False,
    ) -> None:
        """Run a planned subagent node, applying the failure policy on error."""
        subagent_id = node.subagent_id
        self._notify(context, ProgressEventType.STEP_STARTED, step_id=node.id, message=node.label)
        self._record_subagent_start(context, node.id, subagent_id, resumed=resumed)
        try:
            lifecycle = await self._load_lifecycle(subagent_id)
            source = self._resolve_source(context, node, lifecycle)
            params = {
                **(node.inputs or {}),
                "input": context.run.request.input,
                **(extra_params or {}),
            }
            output = await self._invoke_subagent(
                context, node.id, lifecycle, source, params, resumed=resumed
            )
            self._handle_subagent_output(
                context, node.id, subagent_id, output, source, promote=node.promote_result
            )
        except RunCancelled:
            raise
        except Exception as e:
            stage = (
                FailureStage.LOAD
                if isinstance(e, (SubagentLoadError, SubagentNotRegisteredError))
                else FailureStage.EXECUTE
            )
            self._record_subagent_failure(context, subagent_id, node.id, e, stage)
            if self.settings.required_subagent_failure == "fail-run":
                raise

            skipped = context.plan.dependents_of(node.id)
            context.skipped.update(skipped)
            if skipped:
                self._record(
                    context.run_id,
                    WorkspaceEventType.SYSTEM,
                    {
                        "message": "Steps skipped",
                        "step_ids": skipped,
                        "reason": f"depends on failed step {node.id}",
                    },
                )

    def _handle_subagent_output(
        self,
        context: ExecutionContext,
        step_id: str,
        subagent_id: str,
        output: SubagentOutput,
        source: Optional[Artifact],
        promote: bool = False,
        allow_pause: bool = True,
    ) -> None:
        artifact = output.artifact
        metadata = dict(output.metadata or {})

        if artifact is None and metadata.get("run_status") == AWAITING_INPUT and allow_pause:
            context.transition(RunStatus.AWAITING_INPUT)
            context.state.clarification = metadata.get("clarification") or {
                "step_id": step_id,
                "subagent_id": subagent_id,
            }
            self._record(
                context.run_id,
                WorkspaceEventType.SUBAGENT,
                {"action": "awaiting-input", "step_id": step_id, "subagent_id": subagent_id},
            )
            return

        if artifact is None:
            raise SubagentExecutionError(
                subagent_id, f"Subagent {subagent_id} returned no artifact"
            )

        status = artifact.extras.get("status") or metadata.get("status")
        if status in APPROVAL_STATUSES and allow_pause:
            plan = artifact.extras.get("plan", metadata.get("plan"))
            self._notify(
                context,
                ProgressEventType.SUBAGENT_APPROVAL_REQUIRED,
                step_id=step_id,
                payload={"subagent_id": subagent_id, "status": status, "plan": plan},
            )
            context.transition(RunStatus.AWAITING_INPUT)
            context.state.blocked_subagent = BlockedSubagent(
                step_id=step_id,
                subagent_id=subagent_id,
                status=status,
                plan=plan,
                requested_at=self.clock(),
            )
            context.artifacts_by_step[step_id] = artifact
            self._record(
                context.run_id,
                WorkspaceEventType.SUBAGENT,
                {
                    "action": "awaiting-approval",
                    "step_id": step_id,
                    "subagent_id": subagent_id,
                    "status": status,
                    "plan": plan,
                },
            )
            self.run_store.save_snapshot(ExecutionSnapshot.capture(context))
            logger.info(
                "subagent_awaiting_approval",
                run_id=context.run_id,
                step_id=step_id,
                subagent_id=subagent_id,
            )
            return

        context.track_artifact(step_id, artifact)
        if promote or artifact.kind == context.plan.artifact_kind or context.artifact is None:
            context.artifact = artifact

        context.state.subagent_results[subagent_id] = SubagentRunRecord(
            subagent_id=subagent_id,
            step_id=step_id,
            artifact=artifact,
            metadata=metadata,
        )
        self._record(
            context.run_id,
            WorkspaceEventType.SUBAGENT,
            {
                "action": "complete",
                "step_id": step_id,
                "subagent_id": subagent_id,
                "artifact_id": artifact.id,
            },
        )
        self._deliver_artifact(
            context,
            artifact,
            step_id,
            transition={"from": source.kind if source else None, "to": artifact.kind},
        )
        self._notify(
            context,
            ProgressEventType.SUBAGENT_COMPLETED,
            step_id=step_id,
            payload={"subagent_id": subagent_id, "artifact_id": artifact.id},
        )
        self._notify(context, ProgressEventType.STEP_COMPLETED, step_id=step_id)

    def _record_subagent_failure(
        self,
        context: ExecutionContext,
        subagent_id: str,
        step_id: Optional[str],
        error: BaseException,
        stage: FailureStage,
    ) -> None:
        context.state.subagent_failures[subagent_id] = SubagentFailure(
            subagent_id=subagent_id,
            error=str(error),
            stage=stage,
            step_id=step_id,
            timestamp=self.clock(),
        )
        self._record(
            context.run_id,
            WorkspaceEventType.SUBAGENT,
            {
                "action": "failed",
                "step_id": step_id,
                "subagent_id": subagent_id,
                "stage": stage.value,
                "error": str(error),
            },
        )
        self._notify(
            context,
            ProgressEventType.SUBAGENT_FAILED,
            step_id=step_id,
            payload={"subagent_id": subagent_id, "stage": stage.value, "error": str(error)},
            message=str(error),
        )
        logger.warning(
            "subagent_failed",
            run_id=context.run_id,
            step_id=step_id,
            subagent_id=subagent_id,
            stage=stage.value,
            error=str(error),
        )

    def _requested_kinds(self, context: ExecutionContext) -> List[str]:
        requested: List[str] = []
        intent = context.state.cached_intent
        if intent is not None:
            requested.extend(intent.requested_artifacts)
            requested.append(intent.target_artifact)
            requested.extend(intent.transition_path())
        requested.append(context.run.request.artifact_kind)
        return list(dict.fromkeys(requested))

    async def _run_auto_subagents(self, context: ExecutionContext) -> None:
        """Produce requested kinds the plan did not cover, isolating each failure."""
        primary = context.artifact
        if self.registry is None or primary is None:
            return

        requested = self._requested_kinds(context)
        extra = context.run.request.input.get("context")
        payload = extra.get("context_payload") if isinstance(extra, dict) else None
        state = context.state
        sequence = 0

        for manifest in self.registry.filter_by_artifact(primary.kind):
            if manifest.creates not in requested or manifest.creates == primary.kind:
                continue
            if manifest.id in state.subagent_results or manifest.id in state.subagent_failures:
                continue
            if manifest.creates in context.artifacts_by_kind:
                continue
            if context.cancel_event is not None and context.cancel_event.is_set():
                self._record(
                    context.run_id,
                    WorkspaceEventType.SYSTEM,
                    {"message": "Auto subagents cancelled", "next_subagent_id": manifest.id},
                )
                logger.info("auto_subagents_cancelled", run_id=context.run_id)
                return

            sequence += 1
            step_id = f"subagent-auto-{manifest.id}-{sequence}"
            try:
                lifecycle = await self._load_lifecycle(manifest.id)
            except (SubagentLoadError, SubagentNotRegisteredError) as e:
                self._record_subagent_start(context, step_id, manifest.id, primary)
                self._record_subagent_failure(context, manifest.id, step_id, e, FailureStage.LOAD)
                continue

            source_kinds = lifecycle.metadata.source_kinds
            if source_kinds and primary.kind not in source_kinds:
                continue

            params = {
                **(payload if isinstance(payload, dict) else {}),
                "input": context.run.request.input,
                "require_plan_confirmation": False,
            }
            self._record_subagent_start(context, step_id, manifest.id, primary)
            try:
                output = await self._invoke_subagent(context, step_id, lifecycle, primary, params)
                self._handle_subagent_output(
                    context, step_id, manifest.id, output, primary, allow_pause=False
                )
            except Exception as e:
                self._record_subagent_failure(
                    context, manifest.id, step_id, e, FailureStage.EXECUTE
                )

    # ------------------------------------------------------------------
    # Verification
    # ------------------------------------------------------------------

    async def _verify(self, context: ExecutionContext) -> VerificationResult:
        artifact = context.artifact
        names = [getattr(v, "name", type(v).__name__) for v in self.verifiers]
        self._notify(
            context,
            ProgressEventType.VERIFICATION_STARTED,
            payload={"artifact_id": artifact.id, "verifiers": names},
        )

        results = []
        for name, verifier in zip(names, self.verifiers):
            results.append((name, await verifier.verify(artifact, context.run)))

        verification = aggregate_verification(results)
        context.verification = verification
        self._record(
            context.run_id,
            WorkspaceEventType.VERIFICATION,
            {
                "artifact_id": artifact.id,
                "status": verification.status.value,
                "issues": [issue.model_dump(mode="json") for issue in verification.issues],
                "verifiers": verification.metadata.get("verifiers", {}),
            },
        )
        self._notify(
            context,
            ProgressEventType.VERIFICATION_COMPLETED,
            payload={
                "status": verification.status.value,
                "issue_count": len(verification.issues),
            },
        )
        logger.info(
            "verification_completed",
            run_id=context.run_id,
            status=verification.status.value,
            issues=len(verification.issues),
        )
        return verification

    # ------------------------------------------------------------------
    # Run completion
    # ------------------------------------------------------------------

    def _summary(self, context: ExecutionContext) -> RunSummary:
        return RunSummary(
            run_id=context.run_id,
            status=context.status,
            artifact=context.artifact,
            skill_results=context.skill_results,
            verification=context.verification,
            completed_at=self.clock(),
            workspace=context.run.workspace,
            state=context.state,
            subagents=list(context.state.subagent_results.values()),
            error=context.error,
        )

    def _complete(self, context: ExecutionContext) -> RunSummary:
        summary = self._summary(context)
        self.run_store.save_summary(summary)
        if context.status == RunStatus.AWAITING_INPUT:
            self.run_store.save_snapshot(ExecutionSnapshot.capture(context))
        else:
            self.run_store.delete_snapshot(context.run_id)

        messages = {
            RunStatus.COMPLETED: "Run completed",
            RunStatus.AWAITING_INPUT: "Run awaiting input",
            RunStatus.FAILED: "Run failed",
        }
        self._record(
            context.run_id,
            WorkspaceEventType.SYSTEM,
            {
                "message": messages.get(context.status, "Run finished"),
                "status": context.status.value,
                "artifact_id": context.artifact.id if context.artifact else None,
                "error": context.error,
            },
        )
        self._notify(
            context,
            ProgressEventType.RUN_STATUS,
            status=context.status,
            message=context.error,
        )
        self._active.pop(context.run_id, None)
        logger.info("run_finished", run_id=context.run_id, status=context.status.value)
        return summary

    def _fail(
        self,
        run: RunContext,
        context: Optional[ExecutionContext],
        error: BaseException,
        progress: Optional[ProgressCallback],
    ) -> RunSummary:
        message = "Run cancelled" if isinstance(error, RunCancelled) else str(error)
        if context is not None:
            context.error = message
            if context.status in (RunStatus.RUNNING, RunStatus.AWAITING_INPUT):
                context.transition(RunStatus.FAILED)

        self._record(
            run.run_id,
            WorkspaceEventType.SYSTEM,
            {
                "message": "Run failed",
                "error": message,
                "code": getattr(error, "code", type(error).__name__),
            },
        )
        self._emit(
            progress,
            ProgressEventType.RUN_STATUS,
            run.run_id,
            status=RunStatus.FAILED,
            message=message,
        )

        if context is not None:
            summary = self._summary(context)
        else:
            summary = RunSummary(
                run_id=run.run_id,
                status=RunStatus.FAILED,
                completed_at=self.clock(),
                workspace=run.workspace,
                state=run.state,
                error=message,
            )
        self.run_store.save_summary(summary)
        self.run_store.delete_snapshot(run.run_id)
        self._active.pop(run.run_id, None)
        logger.error("run_failed", run_id=run.run_id, error=message)
        return summary

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def _deliver_artifact(
        self,
        context: ExecutionContext,
        artifact: Artifact,
        step_id: Optional[str],
        transition: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.workspace.write_artifact(context.run_id, artifact)
        self._record(
            context.run_id,
            WorkspaceEventType.ARTIFACT,
            {
                "action": "written",
                "step_id": step_id,
                "artifact_id": artifact.id,
                "kind": artifact.kind,
                "version": artifact.version,
            },
        )
        payload: Dict[str, Any] = {"artifact": artifact.summary().model_dump(mode="json")}
        if transition is not None:
            payload["transition"] = transition
        self._notify(
            context, ProgressEventType.ARTIFACT_DELIVERED, step_id=step_id, payload=payload
        )

    def _record(
        self, run_id: str, event_type: WorkspaceEventType, payload: Dict[str, Any]
    ) -> WorkspaceEvent:
        return self.workspace.append_event(
            run_id, WorkspaceEvent(run_id=run_id, type=event_type, payload=payload)
        )

    def _notify(
        self, context: ExecutionContext, event_type: ProgressEventType, **fields: Any
    ) -> None:
        self._emit(context.progress, event_type, context.run_id, **fields)

    def _emit(
        self,
        progress: Optional[ProgressCallback],
        event_type: ProgressEventType,
        run_id: str,
        **fields: Any,
    ) -> None:
        if progress is None:
            return
        event = ProgressEvent(type=event_type, run_id=run_id, timestamp=self.clock(), **fields)
        try:
            progress(event)
        except Exception as e:
            logger.warning("progress_callback_failed", run_id=run_id, error=str(e))


def create_controller(
    settings: Optional[Settings] = None,
    workspace: Optional[WorkspaceStore] = None,
    run_store: Optional[RunStateStore] = None,
) -> GraphController:
    """Assemble a controller with the built-in skills, subagents and verifiers.

    A model-backed intent classifier is used when an OpenRouter key is
    configured; otherwise keyword classification.
    """
    settings = settings or get_settings()
    registry = default_registry(settings.enabled_subagents)

    if settings.openrouter_api_key:
        classifier = ModelIntentClassifier(
            ModelInvocationService.from_settings(settings),
            model=settings.default_model,
        )
    else:
        classifier = KeywordIntentClassifier()

    planner = Planner(IntentResolver(classifier, registry), registry=registry)
    return GraphController(
        planner=planner,
        skill_runner=PrdSkillRunner(),
        workspace=workspace or create_workspace_store(settings.workspace_root),
        registry=registry,
        verifiers=[PrdVerifier()],
        run_store=run_store,
        settings=settings,
    )
