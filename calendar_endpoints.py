import azure.functions as func

from function_app import app, calendar_proxy_handler
from oauth_endpoints import ALL_METHODS


@app.function_name(name="GoogleCalendarProxy")
@app.route(route="google-calendar-proxy", methods=ALL_METHODS, auth_level=func.AuthLevel.ANONYMOUS)
def google_calendar_proxy(req: func.HttpRequest) -> func.HttpResponse:
    return calendar_proxy_handler.handle(req)
