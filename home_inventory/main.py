from home_inventory.application import create_app

app = create_app()
