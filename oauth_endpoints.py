import azure.functions as func

from function_app import (
    app,
    oauth_callback_handler,
    oauth_exchange_handler,
    oauth_start_handler,
    token_refresh_handler,
)

# Every verb is routed to the handlers so an unsupported one is answered with 405, not a host 404.
ALL_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]


@app.function_name(name="GoogleOAuthStart")
@app.route(route="google-oauth-start", methods=ALL_METHODS, auth_level=func.AuthLevel.ANONYMOUS)
def google_oauth_start(req: func.HttpRequest) -> func.HttpResponse:
    return oauth_start_handler.handle(req)


@app.function_name(name="GoogleOAuthExchange")
@app.route(route="google-oauth-exchange", methods=ALL_METHODS, auth_level=func.AuthLevel.ANONYMOUS)
def google_oauth_exchange(req: func.HttpRequest) -> func.HttpResponse:
    return oauth_exchange_handler.handle(req)


@app.function_name(name="GoogleOAuthCallback")
@app.route(route="google-oauth-callback", methods=ALL_METHODS, auth_level=func.AuthLevel.ANONYMOUS)
def google_oauth_callback(req: func.HttpRequest) -> func.HttpResponse:
    return oauth_callback_handler.handle(req)


@app.function_name(name="GoogleRefresh")
@app.route(route="google-refresh", methods=ALL_METHODS, auth_level=func.AuthLevel.ANONYMOUS)
def google_refresh(req: func.HttpRequest) -> func.HttpResponse:
    return token_refresh_handler.handle(req)
