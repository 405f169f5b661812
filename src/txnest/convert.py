import re

from txnest.exception import TxnestError

PLACEHOLDER = re.compile(
    r"'(?:[^']|'')*'"
    r"|\$(?P<tag>(?:[A-Za-z_][A-Za-z0-9_]*)?)\$.*?\$(?P=tag)\$"
    r"|\$(?:(?P<position>\d+)|(?P<name>[a-z][a-z0-9_]*))",
    re.DOTALL,
)


def convert_sql_params(
    statement: str,
    positional_sub: str = "%s",
    keyword_sub: str = "%({name})s",
) -> str:
    """Rewrite `$1` and `$name` placeholders into the driver's paramstyle

    Quoted string literals and dollar-quoted bodies (`$$ ... $$`,
    `$tag$ ... $tag$`) are left untouched. Positional placeholders become
    unnumbered driver placeholders, so they must read `$1`, `$2`, ... in
    the order they appear.

    Args:
        statement (str): SQL text
        positional_sub (str, optional): Replacement for `$1`-style
            placeholders. Defaults to `"%s"`.
        keyword_sub (str, optional): Format string for `$name`-style
            placeholders. Defaults to `"%({name})s"`.

    Raises:
        TxnestError: If both placeholder styles appear in one statement,
            or positional placeholders are out of order or repeated

    Returns:
        str: The converted statement
    """
    styles = set()
    positions = []

    def substitute(match):
        if match.group("name"):
            styles.add("keyword")
            return keyword_sub.format(name=match.group("name"))
        if match.group("position"):
            styles.add("positional")
            positions.append(int(match.group("position")))
            return positional_sub
        return match.group(0)

    statement = PLACEHOLDER.sub(substitute, statement)
    if len(styles) > 1:
        raise TxnestError(
            "Cannot mix positional and keyword params in one statement"
        )
    if positions != list(range(1, len(positions) + 1)):
        found = ", ".join(f"${position}" for position in positions)
        raise TxnestError(
            "Positional params must be numbered $1, $2, ... in the order "
            f"they appear, got {found}"
        )
    return statement
