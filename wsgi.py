from flowauto import create_app

app = create_app()

# gunicorn -w 2 --threads 4 wsgi:app
# Flow execution runs on in-process thread pools, so prefer threaded workers.
