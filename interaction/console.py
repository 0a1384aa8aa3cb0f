import argparse

from catalog.backend import load_snapshot_file
from catalog.config import CATALOG_PATH
from catalog.persistence import JsonlPersistence
from elimination_engine import EliminationEngine, Phase
from engine_config import load_engine_config
from engine_errors import EngineError, NoHistoryError
from interaction.cli_helpers import (
    print_banner,
    print_fail_list,
    print_success,
    prompt_for_answer,
    prompt_for_gate,
)
from question_selector import QuestionKind


def run_console(engine, input_fn=input, print_fn=print):
    """Play one session in the terminal. Returns the final Turn, or None if the player quit."""
    print_banner(print_fn=print_fn)
    session = engine.new_session()
    turn = engine.current_turn(session)

    while not turn.is_terminal:
        if turn.phase is Phase.AI_GATE:
            choice = prompt_for_gate(input_fn=input_fn)
            if choice == "exit":
                return None
            try:
                turn = engine.choose_ai_gate(session, choice)
            except EngineError as exc:
                print_fn(f"| ENGINE: {exc}")
            continue

        question = turn.question
        reveal = question.kind is QuestionKind.REVEAL
        response = prompt_for_answer(question, input_fn=input_fn, reveal=reveal)
        if response == "exit":
            return None
        if response == "back":
            try:
                turn = engine.back(session)
            except NoHistoryError:
                print_fn("| ENGINE: Nothing to undo.")
            continue

        key = QuestionKind.REVEAL if reveal else question.tag_key
        turn = engine.answer(session, key, response)

    if turn.phase is Phase.SUCCESS:
        print_success(session.catalog.item(turn.item_id).title, turn.question_count, print_fn=print_fn)
    else:
        print_fail_list(turn.fail_list, print_fn=print_fn)
    return turn


def main(argv=None):
    parser = argparse.ArgumentParser(description="Play the tag elimination game in the terminal.")
    parser.add_argument("--catalog", default=CATALOG_PATH, help="Path to a catalog snapshot JSON file")
    parser.add_argument("--engine-config", default="", help="Path to JSON/YAML engine config")
    parser.add_argument("--outcome-log", default="", help="JSONL file for session outcomes and popularity bumps")
    args = parser.parse_args(argv)

    catalog = load_snapshot_file(args.catalog)
    persistence = JsonlPersistence(args.outcome_log or None)
    catalog = catalog.with_play_bonuses(persistence.load_bonuses())
    engine = EliminationEngine(
        catalog,
        config=load_engine_config(args.engine_config or None),
        persistence=persistence,
    )
    run_console(engine)


if __name__ == "__main__":
    main()
