from little_helper.main import run

run()
