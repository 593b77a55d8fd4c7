import azure.functions as func

from function_app import app, gmail_send_handler
from oauth_endpoints import ALL_METHODS


@app.function_name(name="GoogleGmailSend")
@app.route(route="google-gmail-send", methods=ALL_METHODS, auth_level=func.AuthLevel.ANONYMOUS)
def google_gmail_send(req: func.HttpRequest) -> func.HttpResponse:
    return gmail_send_handler.handle(req)
