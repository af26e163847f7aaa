from app.contacthub import create_app

app = create_app()
