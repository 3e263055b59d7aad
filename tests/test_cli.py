import argparse
import asyncio

from hilite_cli import run


def cli_args(path, **overrides):
    args = dict(file=str(path), lang='py', mode='ansi', output=str(path.with_suffix('.png')),
                identity='cli')
    args.update(overrides)
    return argparse.Namespace(**args)


def test_ansi_mode(service, tmp_path, capsys):
    source = tmp_path / "main.py"
    source.write_text("print('hi')\n")
    assert asyncio.run(run(cli_args(source), service)) == 0
    assert "print" in capsys.readouterr().out


def test_png_mode_writes_image(service, tmp_path):
    source = tmp_path / "main.py"
    source.write_text("print('hi')\n")
    assert asyncio.run(run(cli_args(source, mode='png'), service)) == 0
    assert (tmp_path / "main.png").read_bytes().startswith(b'\x89PNG')


def test_unavailable_language_is_reported(service, tmp_path, capsys):
    source = tmp_path / "main.c"
    source.write_text("int main(void) { return 0; }\n")
    assert asyncio.run(run(cli_args(source, lang='c'), service)) == 1
    assert "Language 'c' is not available" in capsys.readouterr().err
