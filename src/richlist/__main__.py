from richlist.cli import cli

if __name__ == '__main__':
    cli(prog_name='richlist', standalone_mode=True)
