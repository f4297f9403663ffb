import inspect


class CommandRegistrationError(Exception):
    """Exception raised when attempting to register a duplicate subcommand."""

# Registry that stores all subcommands made available to the CLI dispatcher.
_COMMAND_SPECS = {}


def register_command(help_text, description=None, help=None, short=None):
    """Register a command handler for the CLI dispatcher.

    Parameters without a default become positional arguments, the others
    become ``--flags``. ``short`` maps a parameter name to an extra short
    flag such as ``-p``.
    """

    def decorator(func):
        name = func.__name__.replace("_", "-")
        if name in _COMMAND_SPECS:
            raise CommandRegistrationError(
                f"Command '{name}' already registered"
            )
        _COMMAND_SPECS[name] = {
            "handler": func,
            "help": help_text.strip(),
            "description": (
                description if description is not None else help_text
            ).strip(),
            "arguments": [],
        }
        signature = inspect.signature(func)
        argument_help = help if help is not None else {}
        short_flags = short if short is not None else {}
        for parameter in signature.parameters.values():
            if parameter.kind in [
                inspect.Parameter.VAR_POSITIONAL,
                inspect.Parameter.VAR_KEYWORD,
            ]:
                continue
            flags = []
            kwargs = {}
            if parameter.default is inspect.Parameter.empty:
                flags.append(parameter.name)
            else:
                if parameter.name in short_flags:
                    flags.append(short_flags[parameter.name])
                flags.append("--" + parameter.name.replace("_", "-"))
                kwargs["default"] = parameter.default
                kwargs["dest"] = parameter.name
                if isinstance(parameter.default, bool):
                    # argparse's type=bool treats any non-empty string as
                    # True, so booleans become on/off switches instead
                    kwargs["action"] = (
                        "store_false" if parameter.default else "store_true"
                    )
                elif parameter.default is not None:
                    kwargs["type"] = type(parameter.default)
            if parameter.name in argument_help:
                kwargs["help"] = argument_help[parameter.name].strip()
            _COMMAND_SPECS[name]["arguments"].append(
                {"flags": flags, "kwargs": kwargs, "dest": parameter.name}
            )
        return func

    return decorator


def registered_commands():
    return dict(_COMMAND_SPECS)
