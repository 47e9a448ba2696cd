"""
Database Schemas for the Basha Lagbe rental marketplace

MongoDB collections are defined below using Pydantic models. Each class name is
converted to lowercase for the collection name (User -> "user").

We will use these collections:
- user: tenants, landlords and admins
- property: rental listings (nested layout plus the legacy flat fields)
- review: one rating per (property, reviewer)
- inquiry: tenant questions to a landlord about a listing
- application: rental applications with uploaded documents
- message: direct messages between users
- conversation: message threads per participant pair and property
- notification: in-app notifications addressed by email
- emailverification: short-lived 6 digit codes (TTL indexed)
"""

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, EmailStr, Field

Role = Literal["user", "admin"]
PropertyType = Literal["apartment", "house", "studio", "room", "duplex", "villa",
                       "commercial", "office", "shop", "warehouse"]
ListingStatus = Literal["draft", "pending", "approved", "rejected", "rented", "sold", "inactive"]
VerificationStatus = Literal["pending", "approved", "rejected"]
Furnishing = Literal["unfurnished", "semi-furnished", "fully-furnished"]
VerificationType = Literal["signup", "signin", "admin-signin", "password-reset"]
InquiryStatus = Literal["pending", "read", "replied", "archived"]
InquiryPriority = Literal["low", "normal", "high", "urgent"]
ApplicationStatus = Literal["pending", "under_review", "approved", "rejected", "withdrawn"]
MessageType = Literal["text", "inquiry", "application", "system"]
NotificationType = Literal[
    "property_submitted", "property_approved", "property_rejected",
    "inquiry_received", "inquiry_responded",
    "application_received", "application_status",
    "message_received", "system",
]

INQUIRY_STATUSES = ("pending", "read", "replied", "archived")
INQUIRY_PRIORITIES = ("low", "normal", "high", "urgent")
APPLICATION_STATUSES = ("pending", "under_review", "approved", "rejected", "withdrawn")


class User(BaseModel):
    fullName: str = Field(..., min_length=1, max_length=100)
    email: EmailStr
    password: str = Field(..., description="BCrypt hash of password")
    mobileNumber: Optional[str] = Field(None, description="Unique when present")
    age: Optional[int] = Field(None, ge=18, le=100)
    address: str = ""
    role: Role = "user"
    avatar: str = ""
    isEmailVerified: bool = False
    isActive: bool = True
    twoFactorEnabled: bool = False
    isGoogleAccount: bool = False
    isGitHubAccount: bool = False
    failedLoginAttempts: int = 0
    lockedUntil: Optional[datetime] = None
    lastLoginAt: Optional[datetime] = None
    favorites: List[Any] = Field(default_factory=list, description="Property ObjectIds")


class EmailVerification(BaseModel):
    email: str
    verificationCode: str = Field(..., min_length=6, max_length=6)
    type: VerificationType
    expiresAt: datetime
    isUsed: bool = False
    attempts: int = 0


# Property, nested layout

class BasicInfo(BaseModel):
    title: str = Field(..., max_length=200)
    description: str = Field(..., max_length=2000)
    propertyType: PropertyType = "apartment"
    listingType: Literal["rent", "sale"] = "rent"
    status: ListingStatus = "pending"
    featured: bool = False


class Owner(BaseModel):
    userId: Any
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None


class GeoPoint(BaseModel):
    type: Literal["Point"] = "Point"
    coordinates: List[float] = Field(default_factory=lambda: [90.4125, 23.7808])


class Address(BaseModel):
    street: str
    area: str
    district: str
    division: str = "Dhaka"
    postalCode: Optional[str] = None
    landmark: Optional[str] = None


class Location(BaseModel):
    coordinates: GeoPoint = Field(default_factory=GeoPoint)
    address: Address


class Area(BaseModel):
    total: int = 800
    unit: Literal["sqft", "sqm"] = "sqft"


class Floor(BaseModel):
    current: int = 1
    total: int = 5


class Details(BaseModel):
    bedrooms: int = Field(..., ge=0)
    bathrooms: int = Field(..., ge=0)
    livingRooms: int = 1
    kitchens: int = 1
    balconies: int = 0
    area: Area = Field(default_factory=Area)
    floor: Floor = Field(default_factory=Floor)
    furnishing: Furnishing = "unfurnished"


class Rent(BaseModel):
    monthly: int = Field(..., ge=0)
    currency: str = "BDT"
    negotiable: bool = False


class Deposit(BaseModel):
    amount: int = 0
    months: int = 2


class Pricing(BaseModel):
    rent: Rent
    deposit: Deposit = Field(default_factory=Deposit)


class PropertyImage(BaseModel):
    url: str
    thumbnail: Optional[str] = None
    caption: Optional[str] = None
    category: Literal["exterior", "interior", "bedroom", "bathroom", "kitchen", "living", "amenities"] = "interior"
    isPrimary: bool = False


class Media(BaseModel):
    images: List[PropertyImage] = Field(default_factory=list)


class BuildingAmenities(BaseModel):
    elevator: bool = False
    generator: bool = False
    security: bool = False
    parking: bool = False


class UnitAmenities(BaseModel):
    wifi: bool = False
    airConditioning: bool = False
    heating: bool = False
    gas: bool = False


class Amenities(BaseModel):
    building: BuildingAmenities = Field(default_factory=BuildingAmenities)
    unit: UnitAmenities = Field(default_factory=UnitAmenities)


class Availability(BaseModel):
    availableFrom: Optional[datetime] = None
    isAvailable: bool = True


class Rating(BaseModel):
    average: float = 0
    count: int = 0


class Performance(BaseModel):
    views: int = 0
    inquiries: int = 0
    favorites: int = 0
    rating: Rating = Field(default_factory=Rating)


class Property(BaseModel):
    basicInfo: BasicInfo
    owner: Owner
    location: Location
    details: Details
    pricing: Pricing
    media: Media = Field(default_factory=Media)
    amenities: Amenities = Field(default_factory=Amenities)
    availability: Availability = Field(default_factory=Availability)
    performance: Performance = Field(default_factory=Performance)

    # Legacy flat layout, written alongside the nested one
    title: str
    description: str
    rentPrice: int
    address: str
    images: List[str] = Field(default_factory=list)
    apartmentType: Optional[str] = None
    totalRooms: int = 0
    bedrooms: int = 0
    bathrooms: int = 0
    washrooms: int = 0
    squareFeet: int = 800
    floor: int = 1
    totalFloors: int = 5
    hasLift: bool = False
    hasParking: bool = False
    isFurnished: bool = False
    hasBalcony: bool = False
    hasGas: bool = False
    hasWifi: bool = False
    availableFrom: Optional[datetime] = None
    isAvailable: bool = True
    ownerName: Optional[str] = None
    ownerPhone: Optional[str] = None
    ownerEmail: Optional[str] = None
    postedBy: Any = None
    views: int = 0
    verificationStatus: VerificationStatus = "pending"
    isVerified: bool = False


class Review(BaseModel):
    propertyId: Any
    reviewer: Any
    rating: int = Field(..., ge=1, le=5)
    comment: str = Field(..., min_length=1, max_length=1000)
    helpful: List[Any] = Field(default_factory=list)
    status: Literal["pending", "approved", "rejected", "flagged"] = "approved"


class Inquiry(BaseModel):
    listing: Any
    inquirer: Any
    landlord: Any
    subject: str = Field(..., max_length=200)
    message: str = Field(..., max_length=2000)
    contactMethod: Literal["email", "phone", "both"] = "email"
    phoneNumber: Optional[str] = None
    preferredTime: Optional[str] = None
    moveInDate: Optional[datetime] = None
    budgetRange: Optional[str] = None
    questions: List[str] = Field(default_factory=list)
    status: InquiryStatus = "pending"
    priority: InquiryPriority = "normal"
    replies: List[Dict[str, Any]] = Field(default_factory=list)
    notes: List[Dict[str, Any]] = Field(default_factory=list)
    archived: bool = False
    lastActivity: Optional[datetime] = None


class PersonalInfo(BaseModel):
    fullName: str
    phone: str
    email: EmailStr
    dateOfBirth: Optional[datetime] = None
    nationalId: Optional[str] = None
    occupation: Optional[str] = None
    monthlyIncome: Optional[float] = None
    employer: Optional[str] = None


class RentalHistory(BaseModel):
    currentAddress: Optional[str] = None
    landlordName: Optional[str] = None
    landlordContact: Optional[str] = None
    monthlyRent: Optional[float] = None
    reasonForMoving: Optional[str] = None


class Reference(BaseModel):
    name: str
    relationship: str
    phone: str
    email: Optional[EmailStr] = None


class Preferences(BaseModel):
    moveInDate: Optional[datetime] = None
    leaseDuration: Optional[str] = None
    pets: bool = False
    petDetails: Optional[str] = None
    smoking: bool = False
    additionalOccupants: int = 0
    occupantDetails: Optional[str] = None


class Application(BaseModel):
    propertyId: Any
    applicantEmail: EmailStr
    landlordEmail: EmailStr
    personalInfo: PersonalInfo
    rentalHistory: RentalHistory = Field(default_factory=RentalHistory)
    references: List[Reference] = Field(default_factory=list)
    preferences: Preferences = Field(default_factory=Preferences)
    documents: Dict[str, str] = Field(default_factory=dict)
    coverLetter: Optional[str] = None
    status: ApplicationStatus = "pending"


class MessageMetadata(BaseModel):
    isEdited: bool = False
    editedAt: Optional[datetime] = None
    isDeleted: bool = False
    deletedAt: Optional[datetime] = None


class Message(BaseModel):
    sender: Any
    receiver: Any
    property: Any = None
    conversation: Any = None
    content: str = Field(..., min_length=1, max_length=2000)
    isRead: bool = False
    readAt: Optional[datetime] = None
    attachments: List[str] = Field(default_factory=list)
    messageType: MessageType = "text"
    metadata: MessageMetadata = Field(default_factory=MessageMetadata)


class Participant(BaseModel):
    user: Any
    role: Literal["tenant", "landlord", "admin"] = "tenant"
    joinedAt: Optional[datetime] = None
    lastReadAt: Optional[datetime] = None


class ConversationContext(BaseModel):
    type: Literal["property-inquiry", "application", "support", "general"] = "general"
    propertyId: Any = None
    subject: Optional[str] = None


class ConversationMetadata(BaseModel):
    lastActivity: Optional[datetime] = None
    messageCount: int = 0


class Conversation(BaseModel):
    participants: List[Participant]
    participantIds: List[Any] = Field(default_factory=list, description="Sorted user ids, used as the thread key")
    context: ConversationContext = Field(default_factory=ConversationContext)
    status: Literal["active", "archived", "blocked"] = "active"
    metadata: ConversationMetadata = Field(default_factory=ConversationMetadata)


class Notification(BaseModel):
    userEmail: str
    type: NotificationType
    title: str
    message: str
    data: Dict[str, Any] = Field(default_factory=dict)
    read: bool = False
    readAt: Optional[datetime] = None
