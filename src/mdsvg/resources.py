from importlib import resources


def load_stylesheet() -> str:
    with resources.files(__package__).joinpath("data/svg.css").open("r", encoding="utf-8") as fh:
        return fh.read()


def load_config_example() -> str:
    with resources.files(__package__).joinpath("data/book.toml.example").open("r", encoding="utf-8") as fh:
        return fh.read()
