import json

import typer


def json_data_callback(ctx: typer.Context, value: str | None):
    if ctx.resilient_parsing or value is None:
        return value
    try:
        data = json.loads(value)
    except json.JSONDecodeError as error:
        raise typer.BadParameter(message=f"'{value}' is not valid JSON: {error.msg}") from error
    if not isinstance(data, dict):
        raise typer.BadParameter(message="data must be a JSON object")
    return data
