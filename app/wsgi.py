from app.panel import create_app

app = create_app()
