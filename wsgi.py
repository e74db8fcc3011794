from salesdesk import create_app

app = create_app()
