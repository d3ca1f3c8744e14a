from bookgen import create_app

app = create_app()
