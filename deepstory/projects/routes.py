from __future__ import annotations

import threading
from dataclasses import asdict
from typing import Any, Dict, Optional

from flask import Response, current_app, jsonify, request

from ..services.errors import DeepStoryError, ValidationError
from ..services.invocation import InvocationClient, RetryPolicy
from ..services.orchestrator import GenerationOrchestrator
from ..services.project_io import export_snapshot, import_snapshot, load_project, save_project
from ..services.prompts import PromptRegistry, template_placeholders
from ..services.providers import ProviderConfig
from ..services.state import StoryInputs
from ..services.text_export import render_chapters_text
from ..system_prompts import PLOT_STRUCTURES
from . import bp

# Guards creation of the per-key orchestrators.
_ORCHESTRATOR_LOCK = threading.Lock()

ERROR_STATUS = {
    "validation": 400,
    "configuration": 400,
    "extraction": 400,
    "client": 502,
    "transient": 503,
}


@bp.errorhandler(DeepStoryError)
def handle_generation_error(exc: DeepStoryError):
    status = ERROR_STATUS.get(exc.kind, 500)
    if status >= 500:
        current_app.logger.warning("Generation request failed (%s): %s", exc.kind, exc)
    return jsonify({"error": str(exc), "kind": exc.kind}), status


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _get_client() -> InvocationClient:
    client = current_app.extensions.get("deepstory_client")
    if client is None:
        policy = RetryPolicy(max_attempts=max(1, int(current_app.config.get("DEEPSTORY_MAX_ATTEMPTS", 3))))
        client = InvocationClient(policy=policy)
        current_app.extensions["deepstory_client"] = client
    return client


def _default_provider() -> ProviderConfig:
    config = current_app.config
    return ProviderConfig(
        provider_kind=config.get("DEEPSTORY_PROVIDER", ""),
        base_url=config.get("DEEPSTORY_BASE_URL", ""),
        api_key=config.get("DEEPSTORY_API_KEY", ""),
        model_name=config.get("DEEPSTORY_MODEL", ""),
        fallback_model_name=config.get("DEEPSTORY_FALLBACK_MODEL") or None,
    )


def _request_provider(payload: Dict[str, Any]) -> ProviderConfig:
    return ProviderConfig.from_mapping(payload.get("provider"), defaults=_default_provider())


def _payload() -> Dict[str, Any]:
    payload = request.get_json(silent=True)
    return payload if isinstance(payload, dict) else {}


def _persist(key: str):
    def callback(orchestrator: GenerationOrchestrator) -> None:
        save_project(
            key,
            export_snapshot(orchestrator.inputs, orchestrator.state, orchestrator.step_custom_instructions),
        )

    return callback


def _get_orchestrator(key: str) -> GenerationOrchestrator:
    cache = current_app.extensions.setdefault("deepstory_orchestrators", {})
    orchestrator = cache.get(key)
    if orchestrator is not None:
        return orchestrator

    with _ORCHESTRATOR_LOCK:
        orchestrator = cache.get(key)
        if orchestrator is None:
            snapshot = load_project(key)
            orchestrator = GenerationOrchestrator(
                _get_client(),
                PromptRegistry(),
                snapshot.state if snapshot else None,
                snapshot.inputs if snapshot else None,
                on_change=_persist(key),
                step_custom_instructions=snapshot.step_custom_instructions if snapshot else None,
            )
            cache[key] = orchestrator
    return orchestrator


def _snapshot_payload(orchestrator: GenerationOrchestrator) -> Dict[str, Any]:
    payload = export_snapshot(orchestrator.inputs, orchestrator.state, orchestrator.step_custom_instructions)
    payload["judgeResult"] = orchestrator.judge_result
    payload["plotStructure"] = orchestrator.plot_structure
    payload["promptOverrides"] = orchestrator.registry.overrides
    return payload


def _chapter_payload(number: int, chapter) -> Dict[str, Any]:
    data = chapter.to_dict()
    data["number"] = number
    return data


def _text(payload: Dict[str, Any], key: str) -> str:
    value = payload.get(key, "")
    return value if isinstance(value, str) else str(value or "")


# ---------------------------------------------------------------------------
# Project snapshot
# ---------------------------------------------------------------------------


@bp.route("/<key>", methods=["GET"])
def detail(key: str):
    return jsonify(_snapshot_payload(_get_orchestrator(key)))


@bp.route("/<key>", methods=["PUT"])
def update(key: str):
    """Edit inputs, step texts, prompt overrides or the plot structure."""

    orchestrator = _get_orchestrator(key)
    payload = _payload()

    prompts = payload.get("prompts")
    if isinstance(prompts, dict):
        for prompt_key, template in prompts.items():
            orchestrator.registry.set_override(prompt_key, template if isinstance(template, str) else None)

    structure = payload.get("plotStructure")
    if isinstance(structure, str) and structure.strip():
        known = {entry["name"] for entry in PLOT_STRUCTURES}
        if structure not in known:
            raise ValidationError(f"Unknown plot structure '{structure}'.")
        orchestrator.plot_structure = structure

    steps = payload.get("steps")
    if isinstance(steps, dict):
        for step_id, text in steps.items():
            orchestrator.set_step_text(step_id, text if isinstance(text, str) else "")

    inputs = payload.get("inputs")
    if isinstance(inputs, dict):
        merged = StoryInputs.from_dict({**orchestrator.inputs.to_dict(), **inputs})
        orchestrator.update_inputs(**asdict(merged))

    return jsonify(_snapshot_payload(orchestrator))


@bp.route("/<key>", methods=["DELETE"])
def reset(key: str):
    orchestrator = _get_orchestrator(key)
    orchestrator.reset()
    current_app.logger.info("Reset project '%s'.", key)
    return jsonify(_snapshot_payload(orchestrator))


@bp.route("/<key>/import", methods=["POST"])
def import_project(key: str):
    orchestrator = _get_orchestrator(key)
    snapshot = import_snapshot(request.get_json(silent=True) if request.is_json else request.get_data(as_text=True))
    orchestrator.load(snapshot.state, snapshot.inputs, snapshot.step_custom_instructions)
    current_app.logger.info("Imported project '%s'.", key)
    return jsonify(_snapshot_payload(orchestrator))


@bp.route("/<key>/export", methods=["GET"])
def export_project(key: str):
    orchestrator = _get_orchestrator(key)
    response = jsonify(
        export_snapshot(orchestrator.inputs, orchestrator.state, orchestrator.step_custom_instructions)
    )
    response.headers["Content-Disposition"] = f'attachment; filename="{key}.json"'
    return response


# ---------------------------------------------------------------------------
# Generation
# ---------------------------------------------------------------------------


@bp.route("/<key>/steps/<step_id>", methods=["POST"])
def generate_step(key: str, step_id: str):
    payload = _payload()
    result = _get_orchestrator(key).generate_step(
        step_id,
        _text(payload, "customInstruction"),
        provider=_request_provider(payload),
    )
    settings: Optional[Dict[str, Any]] = result.settings.present() if result.settings else None
    return jsonify({"step": result.step_id, "content": result.text, "settings": settings})


@bp.route("/<key>/chapters/<int:number>", methods=["POST"])
def generate_chapter(key: str, number: int):
    payload = _payload()
    params = payload.get("params") if isinstance(payload.get("params"), dict) else None
    theme = payload.get("theme") if isinstance(payload.get("theme"), dict) else None
    chapter = _get_orchestrator(key).generate_chapter(
        number, params, theme, provider=_request_provider(payload)
    )
    return jsonify(_chapter_payload(number, chapter))


@bp.route("/<key>/chapters/<int:number>", methods=["PATCH"])
def edit_chapter(key: str, number: int):
    orchestrator = _get_orchestrator(key)
    payload = _payload()
    if "content" not in payload and "title" not in payload:
        raise ValidationError("Provide a new content or title for the chapter.")

    chapter = None
    if "content" in payload:
        chapter = orchestrator.rewrite_chapter(number, _text(payload, "content"))
    if "title" in payload:
        chapter = orchestrator.update_chapter_title(number, _text(payload, "title"))
    return jsonify(_chapter_payload(number, chapter))


@bp.route("/<key>/chapters/<int:number>/sync", methods=["POST"])
def sync_chapter(key: str, number: int):
    payload = _payload()
    result = _get_orchestrator(key).sync_context(number, provider=_request_provider(payload))
    return jsonify(
        {
            "chapter": result.chapter_number,
            "updatedSections": result.updated_sections,
            "entry": result.entry.to_dict(),
        }
    )


@bp.route("/<key>/chapters/<int:number>/params", methods=["GET"])
def chapter_params(key: str, number: int):
    return jsonify(asdict(_get_orchestrator(key).chapter_params(number)))


@bp.route("/<key>/chapters/<int:number>/critique", methods=["POST"])
def critique_chapter(key: str, number: int):
    payload = _payload()
    critique = _get_orchestrator(key).demon_critique(number, provider=_request_provider(payload))
    return jsonify({"critique": critique})


@bp.route("/<key>/chapters/<int:number>/rewrite", methods=["POST"])
def rewrite_chapter(key: str, number: int):
    orchestrator = _get_orchestrator(key)
    payload = _payload()
    provider = _request_provider(payload)
    mode = _text(payload, "mode") or "feedback"

    if mode == "critique":
        chapter = orchestrator.apply_demon_rewrite(
            number, _text(payload, "option"), _text(payload, "critique"), provider=provider
        )
    elif mode == "feedback":
        chapter = orchestrator.feedback_rewrite(number, _text(payload, "feedback"), provider=provider)
    elif mode == "humanize":
        chapter = orchestrator.humanize_rewrite(number, _text(payload, "sample"), provider=provider)
    else:
        raise ValidationError(f"Unknown rewrite mode '{mode}'.")
    return jsonify(_chapter_payload(number, chapter))


@bp.route("/<key>/chapters/<int:number>/themes", methods=["POST"])
def match_themes(key: str, number: int):
    payload = _payload()
    themes = _get_orchestrator(key).match_themes(number, provider=_request_provider(payload))
    return jsonify({"themes": themes})


@bp.route("/<key>/chapters/export.txt", methods=["GET"])
def export_chapters(key: str):
    orchestrator = _get_orchestrator(key)
    text_blob = render_chapters_text(orchestrator.inputs, orchestrator.state.chapters)
    response = Response(text_blob, mimetype="text/plain; charset=utf-8")
    response.headers["Content-Disposition"] = f'attachment; filename="{key}.txt"'
    return response


@bp.route("/<key>/archive/<int:number>/context", methods=["GET"])
def archive_context(key: str, number: int):
    if number < 1:
        raise ValidationError("Chapter numbers start at 1.")
    return jsonify(_get_orchestrator(key).resolve_context(number).to_dict())


@bp.route("/<key>/prompts", methods=["GET"])
def list_prompts(key: str):
    """Every template with its placeholders, for the prompt editor."""

    registry = _get_orchestrator(key).registry
    overrides = registry.overrides
    prompts = []
    for prompt_key in registry.keys():
        template = registry.get(prompt_key)
        prompts.append(
            {
                "key": prompt_key,
                "template": template,
                "overridden": prompt_key in overrides,
                "placeholders": template_placeholders(template),
            }
        )
    return jsonify({"prompts": prompts})


@bp.route("/<key>/prompts/<prompt_key>", methods=["GET"])
def preview_prompt(key: str, prompt_key: str):
    chapter = request.args.get("chapter", type=int)
    preview = _get_orchestrator(key).build_prompt(prompt_key, chapter)
    return jsonify(asdict(preview))


# ---------------------------------------------------------------------------
# Judge and title
# ---------------------------------------------------------------------------


@bp.route("/<key>/judge", methods=["POST"])
def judge(key: str):
    payload = _payload()
    result = _get_orchestrator(key).judge(provider=_request_provider(payload))
    return jsonify({"judgeResult": result})


@bp.route("/<key>/judge/proposals/<int:index>", methods=["POST"])
def select_proposal(key: str, index: int):
    payload = _payload()
    judge_result = payload.get("judgeResult") if isinstance(payload.get("judgeResult"), str) else None
    result = _get_orchestrator(key).select_judge_proposal(
        index, judge_result, provider=_request_provider(payload)
    )
    return jsonify({"step": result.step_id, "content": result.text})


@bp.route("/<key>/title", methods=["POST"])
def generate_title(key: str):
    payload = _payload()
    title = _get_orchestrator(key).generate_title(provider=_request_provider(payload))
    return jsonify({"novelTitle": title})


# ---------------------------------------------------------------------------
# Providers
# ---------------------------------------------------------------------------


@bp.route("/providers/test", methods=["POST"])
def test_provider():
    payload = _payload()
    success, message = _get_client().test_connection(_request_provider(payload))
    return jsonify({"success": success, "message": message})
