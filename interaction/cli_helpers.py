from inference.weight_update import Answer


ANSWER_SHORTCUTS = {
    "y": Answer.YES,
    "yes": Answer.YES,
    "py": Answer.PROBABLY_YES,
    "?": Answer.UNKNOWN,
    "pn": Answer.PROBABLY_NO,
    "n": Answer.NO,
    "no": Answer.NO,
    "-": Answer.DONT_CARE,
}

GATE_SHORTCUTS = {
    "ai": "AI",
    "hand": "HAND",
    "any": "DONT_CARE",
}

BACK_COMMANDS = {"back", "/back", "b"}
EXIT_COMMANDS = {"exit", "quit", "/exit"}


def print_banner(print_fn=print):
    print_fn("=== Tag Elimination Engine ===")
    print_fn("Think of an item; answer y / py / ? / pn / n / - (don't care).")
    print_fn("Commands: 'back' to undo the last answer, 'exit' to quit.")


def is_back_command(text):
    return text in BACK_COMMANDS


def is_exit_command(text):
    return text in EXIT_COMMANDS


def prompt_for_gate(input_fn=input):
    """Returns an AI gate choice string, or 'exit'."""
    choice = input_fn("Was it made with AI? (ai / hand / any): ").lower().strip()
    while choice not in GATE_SHORTCUTS and not is_exit_command(choice):
        choice = input_fn("Please type 'ai', 'hand' or 'any': ").lower().strip()
    return "exit" if is_exit_command(choice) else GATE_SHORTCUTS[choice]


def prompt_for_answer(question, input_fn=input, reveal=False):
    """Returns an Answer, or one of the command strings 'back' / 'exit'."""
    allowed = {"y", "yes", "n", "no"} if reveal else set(ANSWER_SHORTCUTS)
    hint = "(y/n)" if reveal else "(y/py/?/pn/n/-)"
    text = input_fn(f"{question.display_text} {hint}: ").lower().strip()
    while text not in allowed and not is_back_command(text) and not is_exit_command(text):
        text = input_fn(f"Please answer {hint}, 'back' or 'exit': ").lower().strip()
    if is_back_command(text):
        return "back"
    if is_exit_command(text):
        return "exit"
    return ANSWER_SHORTCUTS[text]


def print_fail_list(entries, print_fn=print):
    print_fn("| ENGINE: I could not pin it down. Was it one of these?")
    for rank, entry in enumerate(entries, start=1):
        author = f" / {entry.author}" if entry.author else ""
        print_fn(f"  {rank:>2}. {entry.title}{author} ({entry.probability:.1%})")


def print_success(title, question_count, print_fn=print):
    print_fn(f"| ENGINE: Got it: 「{title}」 in {question_count} questions.")
