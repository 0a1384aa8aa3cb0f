from inference.confidence import evaluate, tag_coverage
from inference.weight_update import apply_reveal_penalty, likelihood_factor, update_weights_for_tag
from question_selector import QuestionKind


def strength_scale(kind, tag, config):
    scale = 1.0
    if kind is QuestionKind.EXPLORE_TAG:
        scale *= config.explore_strength_scale
    elif kind is QuestionKind.SOFT_CONFIRM:
        scale *= config.soft_confirm_strength_scale
    if not tag.is_certain and tag.rank:
        scale *= config.rank_strength_scale.get(tag.rank, 1.0)
    return scale


def evaluate_session(session, config, observer=None):
    metrics = evaluate(
        session.pool.weights,
        effective_weight_floor=config.effective_weight_floor,
        prune_epsilon=config.prune_epsilon,
    )
    session.metrics = metrics
    if observer is not None:
        observer("confidence_evaluated", {"session_id": session.session_id, **metrics.as_dict()})
    return metrics


def run_tag_update_cycle(session, question, answer, config, observer=None):
    """
    Apply one tag answer to the session pool and re-evaluate confidence.

    Emits `weights_updated` and `confidence_evaluated` to the observer when
    one is attached; nothing is copied otherwise.
    """
    catalog = session.catalog
    tag = catalog.tag(question.tag_key)
    carriers = catalog.carrier_index(config.derived_confidence_threshold)[tag.key]
    scale = strength_scale(question.kind, tag, config)

    before = session.pool.snapshot() if observer is not None else None
    coverage = tag_coverage(session.pool.weights, carriers)
    session.pool.replace(update_weights_for_tag(session.pool.weights, carriers, answer, config.beta, scale))

    if observer is not None:
        observer(
            "weights_updated",
            {
                "session_id": session.session_id,
                "tag_key": tag.key,
                "kind": question.kind.value,
                "answer": answer.value,
                "factor": likelihood_factor(answer, config.beta, scale),
                "coverage_before": coverage,
                "weights_before": before,
                "weights_after": session.pool.snapshot(),
            },
        )

    metrics = evaluate_session(session, config, observer=observer)
    return {"coverage": coverage, "scale": scale, "metrics": metrics}


def run_reveal_penalty_cycle(session, item_id, config, observer=None):
    before = session.pool.snapshot() if observer is not None else None
    session.pool.replace(apply_reveal_penalty(session.pool.weights, item_id, config.reveal_penalty))

    if observer is not None:
        observer(
            "weights_updated",
            {
                "session_id": session.session_id,
                "item_id": item_id,
                "kind": QuestionKind.REVEAL.value,
                "answer": "NO",
                "factor": config.reveal_penalty,
                "weights_before": before,
                "weights_after": session.pool.snapshot(),
            },
        )

    return evaluate_session(session, config, observer=observer)
