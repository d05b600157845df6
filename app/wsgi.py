from app.companyos import create_app

app = create_app()
