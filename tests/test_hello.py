from slamkit.hello import main, print_hello


def test_print_hello_output(capsys):
    print_hello()
    assert capsys.readouterr().out == "Hello SLAM\n"


def test_main_prints_and_succeeds(capsys):
    status = main([])
    assert status == 0
    assert capsys.readouterr().out == "Hello SLAM!\n"


def test_main_without_arguments(capsys):
    assert main() == 0
    assert "Hello SLAM!" in capsys.readouterr().out